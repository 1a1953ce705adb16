"""
TCP trivia server: many clients, each playing its own quiz session.

Responsibilities:
- Load host/port from server_info.dat and questions from questions.txt
  (or the built-in question bank).
- Accept TCP connections from multiple players.
- Run every connection as an independent session on a fixed-size worker pool.
- Drive each session through SessionProtocol, one line at a time.
- Shut down cleanly: stop accepting, let sessions finish within a grace
  period, then force the stragglers closed.

Control flow (high level):
1. main():
   - Set up logging, load config and questions.
   - Build a QuizServer and call start(), which blocks.

2. QuizServer.start():
   - Bind the listening socket and run ConnectionDispatcher.accept_loop().

3. ConnectionDispatcher.accept_loop():
   - For each new TCP connection, submit a ClientSession to the pool.

4. ClientSession.run():
   - Send the welcome message.
   - Read lines, pass each to SessionProtocol, send the replies.
   - Close the socket when the session terminates or the client leaves.

5. QuizServer.shutdown():
   - Stop accepting, drain the pool for SHUTDOWN_GRACE_SECONDS, then close
     whatever is still running. Scores of forced sessions are lost.
"""

import logging
import signal
import socket
import sys
import threading
from concurrent import futures
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from .config import CONFIG_FILE, ServerConfig, create_default_config_file, load_server_config
from .protocol import ENCODING, MAX_QUIZ_COUNT, SessionProtocol, encode_message
from .questions import QuestionBank, SessionQuestionTracker, load_question_bank

logger = logging.getLogger(__name__)

HOST = "0.0.0.0"           # Listen on all interfaces
THREAD_POOL_SIZE = 10      # Concurrent sessions
SHUTDOWN_GRACE_SECONDS = 60
ACCEPT_TIMEOUT = 0.5       # Seconds between checks of the running flag
LISTEN_BACKLOG = 10
RECV_SIZE = 4096
MAX_LINE_BYTES = 4096      # Longer client lines end the session
QUESTIONS_FILE = "questions.txt"

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ServerState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


# ---------- Per-client session ----------


class ClientSession:
    """
    One accepted connection and its quiz state.

    run() is executed by a pool worker. close() may be called from any
    thread; it shuts the socket down so a blocked recv() returns at once.
    """

    def __init__(
        self,
        conn: socket.socket,
        addr: Tuple[str, int],
        bank: QuestionBank,
        question_limit: int = MAX_QUIZ_COUNT,
    ):
        self.conn = conn
        self.addr = addr
        self.protocol = SessionProtocol(SessionQuestionTracker(bank), question_limit)
        self._close_lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, messages: List[str]) -> None:
        """Write replies to the client. Raises OSError if the client is gone."""
        for message in messages:
            self.conn.sendall(encode_message(message))

    def read_lines(self) -> Iterator[str]:
        """
        Yield decoded lines from the client until the connection closes.

        Bytes are buffered until a newline arrives, so a multi-byte character
        split across two recv() calls is decoded correctly. A client that
        sends more than MAX_LINE_BYTES without a newline is dropped.
        """
        buffer = b""
        while True:
            chunk = self.conn.recv(RECV_SIZE)
            if not chunk:
                return
            buffer += chunk

            while b"\n" in buffer:
                raw, buffer = buffer.split(b"\n", 1)
                yield raw.decode(ENCODING, errors="replace").rstrip("\r")

            if len(buffer) > MAX_LINE_BYTES:
                logger.warning(
                    "Client %s:%d sent a line longer than %d bytes, disconnecting",
                    self.addr[0], self.addr[1], MAX_LINE_BYTES,
                )
                return

    def run(self) -> None:
        logger.info("New client connected from: %s:%d", *self.addr[:2])
        try:
            self.send(self.protocol.welcome())
            for line in self.read_lines():
                logger.debug("Received from %s:%d: %r", self.addr[0], self.addr[1], line)
                replies = self.protocol.handle_line(line)
                self.send(replies)
                if self.protocol.terminated:
                    break
        except OSError as exc:
            if not self._closed:
                logger.warning("Error handling client %s:%d: %s", self.addr[0], self.addr[1], exc)
        finally:
            self.protocol.connection_closed()
            self.close()

    def close(self) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        try:
            self.conn.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Peer already gone
            pass
        try:
            self.conn.close()
        except OSError as exc:
            logger.warning("Error closing client connection %s:%d: %s", self.addr[0], self.addr[1], exc)

        state = self.protocol.state
        logger.info(
            "Client disconnected from: %s:%d (score %d/%d, %d question(s))",
            self.addr[0], self.addr[1], state.total_score,
            state.max_possible_score, state.questions_issued,
        )


# ---------- Accepting and dispatching ----------


class ConnectionDispatcher:
    """
    Accept connections and run each one as a ClientSession on a fixed pool.

    When every worker is busy, new sessions wait in the executor's queue;
    nothing is rejected.
    """

    def __init__(
        self,
        bank: QuestionBank,
        pool_size: int = THREAD_POOL_SIZE,
        question_limit: int = MAX_QUIZ_COUNT,
    ):
        self.bank = bank
        self.question_limit = question_limit
        self.executor = futures.ThreadPoolExecutor(
            max_workers=pool_size, thread_name_prefix="quiz-session"
        )
        self._lock = threading.Lock()
        # Queued or running sessions and their futures
        self._sessions: Dict[ClientSession, futures.Future] = {}

    @property
    def active_sessions(self) -> int:
        """Sessions queued or running."""
        with self._lock:
            return len(self._sessions)

    def dispatch(self, conn: socket.socket, addr: Tuple[str, int]) -> Optional[futures.Future]:
        session = ClientSession(conn, addr, self.bank, self.question_limit)

        # Held across submit so shutdown() never sees a session without its future
        with self._lock:
            try:
                future = self.executor.submit(self._run_session, session)
            except RuntimeError:
                # Pool already shut down
                future = None
            else:
                self._sessions[session] = future

        if future is None:
            logger.warning("Rejecting %s:%d, server is shutting down", addr[0], addr[1])
            session.close()
        return future

    def _run_session(self, session: ClientSession) -> None:
        try:
            session.run()
        except Exception:
            logger.exception("Session for %s:%d crashed", session.addr[0], session.addr[1])
        finally:
            session.close()
            with self._lock:
                self._sessions.pop(session, None)

    def accept_loop(self, srv: socket.socket, is_running: Callable[[], bool]) -> None:
        """
        Accept new client connections until is_running() returns False or
        the listening socket is closed.

        A failed accept() is logged and the loop goes on.
        """
        while is_running():
            try:
                conn, addr = srv.accept()
            except socket.timeout:
                continue
            except OSError as exc:
                if not is_running():
                    break
                if srv.fileno() < 0:
                    logger.error("Listening socket closed unexpectedly: %s", exc)
                    break
                logger.error("Error accepting client connection: %s", exc)
                continue

            # Sessions block on recv() with no timeout
            conn.settimeout(None)
            self.dispatch(conn, addr)

    def shutdown(self, grace_period: float = SHUTDOWN_GRACE_SECONDS) -> int:
        """
        Stop taking new sessions and wait up to `grace_period` seconds for the
        queued and running ones to finish.

        Sessions still alive afterwards are cancelled (if queued) or have
        their socket closed (if running); their scores are discarded.

        Returns:
            Number of sessions that had to be forced.
        """
        self.executor.shutdown(wait=False)

        with self._lock:
            pending = list(self._sessions.values())

        _, not_done = futures.wait(pending, timeout=grace_period)
        if not not_done:
            return 0

        logger.warning(
            "%d session(s) still active after %ss grace period, forcing termination",
            len(not_done), grace_period,
        )
        with self._lock:
            forced = [(s, f) for s, f in self._sessions.items() if f in not_done]
        for session, future in forced:
            if future.cancel():
                # Queued, never started: nobody else will forget it
                with self._lock:
                    self._sessions.pop(session, None)
            session.close()

        # Running workers notice the closed socket right away.
        futures.wait(not_done, timeout=5)
        return len(not_done)


# ---------- Server lifecycle ----------


class QuizServer:
    """
    Owns the listening socket, the question bank and the dispatcher.

    start() blocks the calling thread; shutdown() may be called from any
    thread (or a signal handler) and is safe to call more than once.
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        bank: Optional[QuestionBank] = None,
        bind_host: str = HOST,
        pool_size: int = THREAD_POOL_SIZE,
        question_limit: int = MAX_QUIZ_COUNT,
        shutdown_grace: float = SHUTDOWN_GRACE_SECONDS,
    ):
        self.config = config or ServerConfig()
        self.bank = bank if bank is not None else load_question_bank()
        self.bind_host = bind_host
        self.pool_size = pool_size
        self.question_limit = question_limit
        self.shutdown_grace = shutdown_grace

        self._state = ServerState.STOPPED
        self._state_lock = threading.Lock()
        self._running = threading.Event()
        self._stopped = threading.Event()
        # Plain flag so a signal handler can set it without taking a lock
        self._stop_requested = False
        self._srv: Optional[socket.socket] = None
        self._address: Optional[Tuple[str, int]] = None
        self.dispatcher: Optional[ConnectionDispatcher] = None

    @property
    def state(self) -> ServerState:
        with self._state_lock:
            return self._state

    @property
    def address(self) -> Optional[Tuple[str, int]]:
        """(host, port) actually bound, once the server is running."""
        return self._address

    def is_running(self) -> bool:
        return self._running.is_set() and not self._stop_requested

    def wait_until_running(self, timeout: Optional[float] = None) -> bool:
        return self._running.wait(timeout)

    def wait_until_stopped(self, timeout: Optional[float] = None) -> bool:
        return self._stopped.wait(timeout)

    def _bind(self) -> socket.socket:
        srv = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            srv.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            srv.bind((self.bind_host, self.config.port))
            srv.listen(LISTEN_BACKLOG)
            srv.settimeout(ACCEPT_TIMEOUT)
        except OSError:
            srv.close()
            raise
        return srv

    def start(self) -> None:
        """
        Bind, then accept clients until shutdown() is called.

        Raises:
            RuntimeError: the server is not stopped.
            OSError: the listening socket could not be bound.
        """
        with self._state_lock:
            if self._state is not ServerState.STOPPED:
                raise RuntimeError(f"Server cannot start while {self._state.value}")
            self._state = ServerState.STARTING
            self._stopped.clear()

        try:
            srv = self._bind()
        except OSError:
            logger.exception("Server failed to start on %s:%d", self.bind_host, self.config.port)
            with self._state_lock:
                self._state = ServerState.STOPPED
                self._stop_requested = False
            self._stopped.set()
            raise

        self.bank.freeze()
        self._srv = srv
        self._address = srv.getsockname()[:2]
        self.dispatcher = ConnectionDispatcher(self.bank, self.pool_size, self.question_limit)

        with self._state_lock:
            aborted = self._stop_requested
            if aborted:
                self._stop_requested = False
                self._state = ServerState.STOPPED
            else:
                self._state = ServerState.RUNNING
                self._running.set()
        if aborted:
            srv.close()
            self.dispatcher.shutdown(0)
            logger.info("Shutdown requested while starting, server not started")
            self._stopped.set()
            return

        logger.info("Server started on %s:%d", self._address[0], self._address[1])
        logger.info("Questions loaded: %d (max %d per session)", len(self.bank), self.question_limit)
        logger.info("Waiting for clients...")

        try:
            self.dispatcher.accept_loop(srv, self.is_running)
        finally:
            self.shutdown()

    def request_stop(self) -> None:
        """
        Ask the accept loop to stop; start() then runs shutdown() itself.

        Does not block or take locks, so it is safe to call from a signal
        handler running on the thread that is inside start().
        """
        self._stop_requested = True

    def shutdown(self) -> None:
        """
        Stop accepting, drain sessions for the grace period, then force-close
        the rest. Calling it again (or before start) does nothing.

        Called while start() is still binding, it only marks the stop; start()
        then closes the socket and returns without accepting anyone.
        """
        with self._state_lock:
            if self._state is ServerState.STARTING:
                self._stop_requested = True
                return
            if self._state is not ServerState.RUNNING:
                return
            self._state = ServerState.STOPPING

        logger.info("Shutting down server...")
        self._running.clear()

        if self._srv is not None:
            try:
                self._srv.close()
            except OSError as exc:
                logger.warning("Error closing listening socket: %s", exc)

        forced = self.dispatcher.shutdown(self.shutdown_grace) if self.dispatcher else 0
        if forced:
            logger.warning("%d session(s) were terminated; their scores are lost", forced)

        with self._state_lock:
            self._state = ServerState.STOPPED
            self._stop_requested = False
        self._stopped.set()
        logger.info("Server shutdown completed")


# ---------- Entry point ----------


def setup_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)


def main() -> None:
    """
    Entry point for the TCP trivia server.

    - Creates server_info.dat with defaults if it is missing.
    - Loads config and questions.
    - Runs the server until Ctrl+C / SIGTERM.
    """
    setup_logging()

    print()
    print("╔════════════════════════════════════════════════════════╗")
    print("║                                                        ║")
    print("║            QUIZNET - NETWORK TRIVIA TCP SERVER         ║")
    print("║                                                        ║")
    print("╚════════════════════════════════════════════════════════╝")
    print()

    create_default_config_file(CONFIG_FILE)
    config = load_server_config(CONFIG_FILE)
    bank = load_question_bank(QUESTIONS_FILE)

    server = QuizServer(config=config, bank=bank)

    def signal_handler(sig, frame):
        # Runs on the accept-loop thread, which may hold the dispatcher lock
        logger.info("Signal %d received, shutting down gracefully...", sig)
        server.request_stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        server.start()
    except OSError:
        sys.exit(1)

    print("[SERVER] Server stopped. Thanks for playing!")


if __name__ == "__main__":
    main()
