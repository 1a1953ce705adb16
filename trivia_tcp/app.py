"""
Streamlit web client for the QuizNet trivia server.

Run with:
    streamlit run trivia_tcp/app.py

A background thread reads server lines and pushes events into a queue kept
in st.session_state; every rerun drains that queue and redraws the page.
The listener thread never calls Streamlit itself.
"""

import queue
import re
import socket
import threading
import time

import streamlit as st

from trivia_tcp.config import CONFIG_FILE, load_server_config
from trivia_tcp.protocol import ENCODING, expects_reply, is_session_end, strip_server_prefix

SCORE_PATTERN = re.compile(r"(?:Total score|Final Score):\s*(\d+)")
QUIZ_HEADER_PATTERN = re.compile(r"^Quiz (\d+)/(\d+)$")


# ---------- low-level helpers ----------

def send_line(sock: socket.socket, text: str) -> None:
    """Send one command line to the server."""
    try:
        sock.sendall((text + "\n").encode(ENCODING))
    except OSError:
        st.session_state.event_queue.put(("log", "[SEND FAILED]"))


def append_log(msg: str) -> None:
    """Append a timestamped line to the transcript."""
    if "log" not in st.session_state:
        st.session_state.log = []
    st.session_state.log.append(f"{time.strftime('%H:%M:%S')}  {msg}")
    # Avoid infinite growth
    if len(st.session_state.log) > 200:
        st.session_state.log = st.session_state.log[-200:]


# ---------- Listener thread (NO Streamlit calls here) ----------

def listener_thread(sock: socket.socket, ev_queue: "queue.Queue[tuple]") -> None:
    """
    Background thread:
    - reads lines from the TCP socket
    - groups question lines ("Quiz i/N" up to the answer request)
    - pushes high-level events into ev_queue
    """
    buffer = b""
    question_lines = None

    while True:
        try:
            chunk = sock.recv(4096)
        except OSError:
            ev_queue.put(("log", "[DISCONNECTED from server]"))
            break

        if not chunk:
            ev_queue.put(("log", "[SERVER CLOSED CONNECTION]"))
            break

        buffer += chunk
        while b"\n" in buffer:
            raw, buffer = buffer.split(b"\n", 1)
            text = strip_server_prefix(raw.decode(ENCODING, errors="replace"))
            ev_queue.put(("log", text))

            # ----- Questions -----
            header = QUIZ_HEADER_PATTERN.match(text)
            if header:
                question_lines = {"label": text, "lines": []}
                continue
            if question_lines is not None:
                if "(a/b/c/d)" in text:
                    ev_queue.put(("question", question_lines))
                    question_lines = None
                else:
                    question_lines["lines"].append(text)
                continue

            # ----- Results -----
            score = SCORE_PATTERN.search(text)
            if score:
                ev_queue.put(("score", int(score.group(1))))
            if text.startswith("Correct!") or text.startswith("Incorrect."):
                ev_queue.put(("feedback", text))
                ev_queue.put(("question", None))

            if is_session_end(text):
                ev_queue.put(("finished", text))
            elif expects_reply(text):
                ev_queue.put(("prompt", text))

    ev_queue.put(("disconnected", None))
    try:
        sock.close()
    except OSError:
        pass


# ---------- Process events in main Streamlit thread ----------

def process_events() -> None:
    """Pull all pending events from event_queue and apply them to session_state."""
    ev_queue: "queue.Queue[tuple]" = st.session_state.event_queue
    while True:
        try:
            kind, payload = ev_queue.get_nowait()
        except queue.Empty:
            break

        if kind == "log":
            append_log(payload)

        elif kind == "question":
            st.session_state.current_question = payload
            if payload is not None:
                st.session_state.feedback = ""

        elif kind == "feedback":
            st.session_state.feedback = payload

        elif kind == "score":
            st.session_state.score = payload

        elif kind == "prompt":
            st.session_state.prompt = payload

        elif kind == "finished":
            st.session_state.finished = True
            st.session_state.prompt = payload

        elif kind == "disconnected":
            st.session_state.connected = False
            st.session_state.sock = None


def reset_game_state() -> None:
    st.session_state.current_question = None
    st.session_state.feedback = ""
    st.session_state.score = 0
    st.session_state.prompt = ""
    st.session_state.finished = False
    st.session_state.log = []


# ---------- Streamlit app ----------

st.set_page_config(
    page_title="QuizNet Trivia (TCP)",
    page_icon="🧠",
    layout="wide",
)

config = load_server_config(CONFIG_FILE)

# Initialize session state
defaults = {
    "sock": None,
    "connected": False,
    "current_question": None,
    "score": 0,
    "log": [],
    "feedback": "",
    "prompt": "",
    "finished": False,
    "connect_error": "",
    "server_host": config.host,
    "server_port": config.port,
}
for key, value in defaults.items():
    if key not in st.session_state:
        st.session_state[key] = value
# Persistent queue (not recreated every rerun)
if "event_queue" not in st.session_state:
    st.session_state.event_queue = queue.Queue()

# First thing: apply any incoming events from the socket
process_events()

st.title("🧠 QuizNet Trivia (TCP)")

# ----- CONNECTION -----
with st.sidebar:
    st.header("Server")

    server_host = st.text_input("Host", value=st.session_state.server_host)
    server_port = st.number_input(
        "Port", min_value=1, max_value=65535, value=int(st.session_state.server_port)
    )

    connect_btn = st.button("Connect", disabled=st.session_state.connected)

    if connect_btn and not st.session_state.connected:
        st.session_state.connect_error = ""
        try:
            s = socket.create_connection((server_host.strip(), int(server_port)), timeout=10)
            s.settimeout(None)
        except OSError as e:
            st.session_state.connect_error = f"Connection error: {e}"
            append_log(f"[ERROR connecting: {e}]")
        else:
            reset_game_state()
            st.session_state.sock = s
            st.session_state.server_host = server_host.strip()
            st.session_state.server_port = int(server_port)
            st.session_state.connected = True
            append_log(f"[CONNECTED to {server_host.strip()}:{int(server_port)}]")

            threading.Thread(
                target=listener_thread,
                args=(s, st.session_state.event_queue),
                daemon=True,
            ).start()

    if st.session_state.connect_error:
        st.error(st.session_state.connect_error)
    elif st.session_state.connected:
        st.success(f"Connected to {st.session_state.server_host}:{st.session_state.server_port}")
    else:
        st.info("Enter the server address, then click Connect.")

    st.metric("Score", st.session_state.score)


def send_command(command: str) -> None:
    if st.session_state.sock:
        send_line(st.session_state.sock, command)
        append_log(f"> {command}")


# ----- MAIN LAYOUT -----
col_left, col_right = st.columns([2, 1])

# LEFT: Question + commands
with col_left:
    st.subheader("Question")
    can_send = st.session_state.connected and not st.session_state.finished

    q = st.session_state.current_question
    if st.session_state.connected and q:
        st.markdown(f"### {q['label']}")
        st.text("\n".join(q["lines"]))

        cols_btns = st.columns(4)
        for i, label in enumerate(["a", "b", "c", "d"]):
            with cols_btns[i]:
                if st.button(label.upper(), key=f"btn_{label}", width="stretch",
                             disabled=not can_send):
                    send_command(label)
    elif st.session_state.finished:
        st.success(st.session_state.prompt or "Session finished.")
    elif st.session_state.connected:
        st.info(st.session_state.prompt or "Waiting for the server...")
    else:
        st.info("Connect to a server from the sidebar to start playing.")

    cmd_cols = st.columns(2)
    with cmd_cols[0]:
        if st.button("Next question", disabled=not can_send or q is not None):
            send_command("quiz")
    with cmd_cols[1]:
        if st.button("Finish", disabled=not can_send):
            send_command("finish")

    if st.session_state.feedback:
        st.markdown("---")
        st.subheader("Feedback")
        st.write(st.session_state.feedback)

# RIGHT: Live transcript
with col_right:
    st.subheader("Live Feed")
    for line in st.session_state.log[-20:]:
        st.code(line)


# ---------- AUTO-REFRESH WHILE CONNECTED ----------
if st.session_state.connected:
    time.sleep(0.2)  # don't hammer CPU
    st.rerun()
