"""Interactive chat client."""

from __future__ import annotations

import argparse
import socket
import sys
import threading
import time
from collections.abc import Iterator, Sequence
from typing import TextIO

from lanchat.protocol import (
    BUFFER_SIZE,
    DEFAULT_COLOR,
    PORT,
    ColorMessage,
    TextMessage,
    encode_frame,
    parse_message,
    split_frames,
)

SERVER_IP = "127.0.0.1"
LOST_MESSAGE = "Соединение с сервером потеряно."
EXIT_COMMAND = "exit"


def _frames(sock: socket.socket) -> Iterator[str]:
    pending = b""
    while True:
        chunk = sock.recv(BUFFER_SIZE)
        if not chunk:
            return
        frames, pending = split_frames(pending + chunk)
        yield from frames


def _ansi(attribute: int) -> str:
    base = 90 if attribute & 8 else 30
    return str(base + bool(attribute & 4) + 2 * bool(attribute & 2) + 4 * bool(attribute & 1))


class ChatClient:
    """Shows messages arriving on a connected socket and sends user input."""

    def __init__(self, sock: socket.socket, output: TextIO | None = None):
        self.sock = sock
        self.output = output if output is not None else sys.stdout
        self.color = DEFAULT_COLOR
        self._stop = threading.Event()
        isatty = getattr(self.output, "isatty", None)
        self._use_color = bool(isatty and isatty())

    def handle(self, message: str) -> ColorMessage | TextMessage:
        """Apply one received message and return what it was."""
        parsed = parse_message(message)
        if isinstance(parsed, ColorMessage):
            self.color = parsed.color
        elif self._use_color:
            self.output.write(f"\x1b[{_ansi(self.color)}m{parsed.text}\x1b[0m")
        else:
            self.output.write(parsed.text)
        self.output.flush()
        return parsed

    def receive_loop(self) -> None:
        """Read and show messages until the connection ends or the client closes."""
        try:
            for message in _frames(self.sock):
                if self._stop.is_set():
                    return
                try:
                    self.handle(message)
                except ValueError:
                    continue
        except OSError:
            pass
        if not self._stop.is_set():
            self.output.write(LOST_MESSAGE + "\n")
            self.output.flush()
            self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def send(self, text: str) -> None:
        """Send one message; raises OSError when the connection is gone."""
        self.sock.sendall(encode_frame(text))

    def close(self) -> None:
        self._stop.set()
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.sock.close()


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Connect to the chat server.")
    parser.add_argument("--host", default=SERVER_IP)
    parser.add_argument("--port", type=int, default=PORT)
    parser.add_argument("--delay", type=float, default=2.0,
                        help="seconds to wait before connecting")
    args = parser.parse_args(argv)

    time.sleep(args.delay)
    try:
        sock = socket.create_connection((args.host, args.port))
    except OSError:
        print("Ошибка подключения к серверу", file=sys.stderr)
        return 1

    client = ChatClient(sock)
    print("Подключено к серверу. Введите ваше имя: ", end="", flush=True)
    name = sys.stdin.readline().rstrip("\r\n")
    try:
        client.send(name)
    except OSError:
        print("Ошибка отправки сообщения", file=sys.stderr)
        client.close()
        return 1

    receiver = threading.Thread(target=client.receive_loop, daemon=True)
    receiver.start()
    print(f"Теперь вы можете отправлять сообщения. Введите '{EXIT_COMMAND}' для выхода.")

    for line in sys.stdin:
        message = line.rstrip("\r\n")
        if message == EXIT_COMMAND or client.stopped:
            break
        try:
            client.send(message)
        except OSError:
            print("Ошибка отправки сообщения", file=sys.stderr)
            break

    client.close()
    receiver.join(5)
    return 0


if __name__ == "__main__":
    sys.exit(main())