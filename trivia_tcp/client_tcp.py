"""
Terminal client for the QuizNet trivia server.

Features:
- Connect to the TCP server (defaults from server_info.dat)
- Show welcome, questions and results with colours
- Answer with a, b, c or d; 'quiz' for the next question; 'finish' to leave
- Stops prompting once the server reports the final score

Usage:
    trivia-client

    Then enter:
    - Server host (or press Enter for the configured one)
    - Server port (or press Enter for the configured one)
    - Commands and answers when prompted
"""

import os
import socket
from typing import Callable, Iterator, Optional

from colorama import Fore, Style, init

from .config import CONFIG_FILE, load_server_config
from .protocol import ENCODING, expects_reply, is_session_end, strip_server_prefix

init(autoreset=True)

CONNECT_TIMEOUT = 10
RECV_SIZE = 4096


def clear_screen():
    """Clear the terminal screen."""
    os.system('cls' if os.name == 'nt' else 'clear')


def print_header():
    """Print the client header."""
    print(Fore.CYAN + Style.BRIGHT + "╔════════════════════════════════════════════════════════╗")
    print(Fore.CYAN + Style.BRIGHT + "║                                                        ║")
    print(Fore.CYAN + Style.BRIGHT + "║            QUIZNET - NETWORK TRIVIA CLIENT             ║")
    print(Fore.CYAN + Style.BRIGHT + "║                                                        ║")
    print(Fore.CYAN + Style.BRIGHT + "╚════════════════════════════════════════════════════════╝")
    print()


def print_separator(char="═", length=60, color=Fore.CYAN):
    """Print a separator line."""
    print(color + char * length)


def colorize_line(text: str) -> str:
    """Pick a colour for one server line based on what it says."""
    if text.startswith("Quiz ") and "/" in text:
        return Fore.YELLOW + Style.BRIGHT + "📝 " + text
    if text.startswith("Correct!"):
        return Fore.GREEN + Style.BRIGHT + "✅ " + text
    if text.startswith("Incorrect."):
        return Fore.RED + Style.BRIGHT + "❌ " + text
    if is_session_end(text):
        return Fore.CYAN + Style.BRIGHT + text
    if text.startswith("Total score:"):
        return Fore.MAGENTA + text
    if text.startswith("Invalid input") or text.startswith("Please request"):
        return Fore.YELLOW + text
    return Fore.WHITE + text


def send_message(sock: socket.socket, message: str) -> bool:
    """Send one line to the server."""
    try:
        sock.sendall((message + "\n").encode(ENCODING))
        return True
    except OSError as e:
        print(Fore.RED + f"\n[ERROR] Failed to send message: {e}")
        return False


def iter_server_lines(sock: socket.socket) -> Iterator[str]:
    """Yield server lines with the "Server> " prefix removed, until the connection closes."""
    buffer = b""
    while True:
        try:
            chunk = sock.recv(RECV_SIZE)
        except OSError:
            print(Fore.RED + "\n[ERROR] Connection lost.")
            return

        if not chunk:
            return
        buffer += chunk

        while b"\n" in buffer:
            raw, buffer = buffer.split(b"\n", 1)
            yield strip_server_prefix(raw.decode(ENCODING, errors="replace"))


def run_session(sock: socket.socket, read_input: Callable[[str], str] = input) -> bool:
    """
    Print server lines and answer its prompts until the session is over.

    Once a line with the final score (or goodbye) arrives, the client stops
    prompting but still prints what the server sends before it closes.

    Returns:
        True if the session ended normally, False if the connection dropped.
    """
    finished = False

    for text in iter_server_lines(sock):
        print(colorize_line(text))

        if is_session_end(text):
            finished = True
            continue

        if not finished and expects_reply(text):
            try:
                user_input = read_input(Fore.GREEN + "> ").strip()
            except EOFError:
                user_input = "finish"
            if not send_message(sock, user_input):
                break

    if not finished:
        print(Fore.RED + "\n[ERROR] Connection closed by server.")
    return finished


def connect_to_server(host: str, port: int) -> Optional[socket.socket]:
    """
    Connect to the quiz server.

    Returns the connected socket, or None on failure.
    """
    try:
        print(Fore.CYAN + f"Connecting to {host}:{port}...")
        sock = socket.create_connection((host, port), timeout=CONNECT_TIMEOUT)
        sock.settimeout(None)  # Remove timeout after connection
        print(Fore.GREEN + "✅ Connected!")
        print()
        return sock

    except socket.timeout:
        print(Fore.RED + "❌ Connection timeout. Server may be unreachable.")
    except ConnectionRefusedError:
        print(Fore.RED + "❌ Connection refused. Is the server running?")
    except OSError as e:
        print(Fore.RED + f"❌ Connection error: {e}")
    return None


def main():
    """
    Main entry point for the TCP trivia client.
    """
    clear_screen()
    print_header()

    config = load_server_config(CONFIG_FILE)

    print(Fore.CYAN + "Enter server details:")
    print_separator("-", 60, Fore.CYAN)

    host_input = input(f"Server host (press Enter for {config.host}): ").strip()
    host = host_input if host_input else config.host

    port_input = input(f"Server port (press Enter for {config.port}): ").strip()
    port = config.port
    if port_input:
        try:
            port = int(port_input)
        except ValueError:
            print(Fore.RED + "Invalid port number. Using default.")

    print()
    print_separator()
    print()

    sock = connect_to_server(host, port)
    if sock is None:
        print(Fore.RED + "\nFailed to connect to server. Exiting...")
        return

    try:
        run_session(sock)
    except KeyboardInterrupt:
        print(Fore.YELLOW + "\n\n👋 Disconnecting...")
    finally:
        try:
            sock.close()
        except OSError:
            pass

        print()
        print(Fore.CYAN + "═" * 60)
        print(Fore.CYAN + "Thanks for playing! 👋")
        print(Fore.CYAN + "═" * 60)
        print()


if __name__ == "__main__":
    main()
