"""Multi-threaded TCP chat server with a waiting queue."""

from __future__ import annotations

import argparse
import os
import socket
import subprocess
import sys
import threading
from collections import deque
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field

from lanchat.protocol import (
    ACCEPT_MESSAGE,
    BUFFER_SIZE,
    JOIN_TEMPLATE,
    LEAVE_TEMPLATE,
    PORT,
    WAIT_MESSAGE,
    color_for,
    color_frame,
    encode_frame,
    split_frames,
)

MAX_CLIENTS = 2
CLIENT_INSTANCES = 3
_ACCEPT_POLL = 0.2
_JOIN_TIMEOUT = 5.0


def _frames(sock: socket.socket) -> Iterator[str]:
    pending = b""
    while True:
        try:
            chunk = sock.recv(BUFFER_SIZE)
        except OSError:
            return
        if not chunk:
            return
        frames, pending = split_frames(pending + chunk)
        yield from frames


@dataclass(eq=False)
class _Client:
    sock: socket.socket
    name: str = ""
    color: int = 0
    thread: threading.Thread | None = None
    send_lock: threading.Lock = field(default_factory=threading.Lock)


class ChatServer:
    """Relays chat messages between at most ``max_clients`` clients."""

    def __init__(self, host: str = "0.0.0.0", port: int = PORT, max_clients: int = MAX_CLIENTS):
        self.host = host
        self.port = port
        self.max_clients = max_clients
        self._listener: socket.socket | None = None
        self._clients: list[_Client] = []
        self._waiting: deque[socket.socket] = deque()
        self._history: list[str] = []
        self._lock = threading.Lock()
        self._history_lock = threading.Lock()
        self._exit = threading.Event()

    @property
    def address(self) -> tuple[str, int]:
        if self._listener is None:
            raise RuntimeError("server is not started")
        return self._listener.getsockname()[:2]

    def start(self) -> tuple[str, int]:
        """Bind and listen; return the bound address."""
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            if os.name != "nt":
                listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind((self.host, self.port))
            listener.listen(socket.SOMAXCONN)
        except OSError:
            listener.close()
            raise
        listener.settimeout(_ACCEPT_POLL)
        self._listener = listener
        return self.address

    def serve_forever(self) -> None:
        """Accept connections until :meth:`shutdown` is called."""
        if self._listener is None:
            raise RuntimeError("server is not started")
        while not self._exit.is_set():
            try:
                conn, _ = self._listener.accept()
            except socket.timeout:
                continue
            except OSError:
                if self._exit.is_set():
                    break
                print("Ошибка при принятии подключения", file=sys.stderr)
                continue
            conn.settimeout(None)
            self._admit(conn)

    def shutdown(self) -> None:
        """Stop accepting, disconnect everyone and wait for handlers."""
        self._exit.set()
        if self._listener is not None:
            self._listener.close()
        with self._lock:
            clients = list(self._clients)
            waiting = list(self._waiting)
            self._waiting.clear()
        for client in clients:
            try:
                client.sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        for client in clients:
            if client.thread is not None and client.thread is not threading.current_thread():
                client.thread.join(_JOIN_TIMEOUT)
        for sock in waiting:
            sock.close()

    def history(self) -> list[str]:
        with self._history_lock:
            return list(self._history)

    def client_count(self) -> int:
        with self._lock:
            return len(self._clients)

    def queue_size(self) -> int:
        with self._lock:
            return len(self._waiting)

    def _admit(self, conn: socket.socket) -> None:
        with self._lock:
            if len(self._clients) < self.max_clients:
                self._register(conn)
                print(f"Клиент подключен. Всего клиентов: {len(self._clients)}")
                return
            self._waiting.append(conn)
            print(f"Клиент добавлен в очередь ожидания. Размер очереди: {len(self._waiting)}")
        try:
            conn.sendall(encode_frame(WAIT_MESSAGE))
        except OSError:
            pass

    def _register(self, conn: socket.socket) -> None:
        # Caller holds self._lock.
        client = _Client(conn)
        client.thread = threading.Thread(target=self._handle, args=(client,), daemon=True)
        self._clients.append(client)
        client.thread.start()

    def _send(self, client: _Client, data: bytes) -> None:
        with client.send_lock:
            try:
                client.sock.sendall(data)
            except OSError:
                pass

    def _record(self, message: str) -> None:
        with self._history_lock:
            self._history.append(message)

    def _post(self, sender: _Client, message: str) -> None:
        self._record(message)
        data = encode_frame(message)
        with self._lock:
            for client in self._clients:
                if client is not sender:
                    self._send(client, data)

    def _handle(self, client: _Client) -> None:
        frames = _frames(client.sock)
        with self._lock:
            client.color = color_for(len(self._clients))
        self._send(client, color_frame(client.color))
        for message in self.history():
            self._send(client, encode_frame(message))

        name = next(frames, None)
        if name is None:
            self._leave(client, None)
            return
        client.name = name
        self._post(client, JOIN_TEMPLATE.format(name=name))

        for message in frames:
            if self._exit.is_set():
                break
            self._post(client, f"{name}: {message}\n")

        self._leave(client, LEAVE_TEMPLATE.format(name=name))

    def _leave(self, client: _Client, message: str | None) -> None:
        if message is not None:
            self._record(message)
        with self._lock:
            if client in self._clients:
                self._clients.remove(client)
            if message is not None:
                data = encode_frame(message)
                for other in self._clients:
                    self._send(other, data)
            if not self._exit.is_set() and self._waiting and len(self._clients) < self.max_clients:
                next_sock = self._waiting.popleft()
                try:
                    next_sock.sendall(encode_frame(ACCEPT_MESSAGE))
                except OSError:
                    pass
                self._register(next_sock)
        client.sock.close()


def launch_clients(count: int, command: Sequence[str] | None = None) -> list[subprocess.Popen]:
    """Start ``count`` client processes, each in its own console where possible."""
    if command is None:
        command = [sys.executable, "-m", "lanchat.client"]
    flags = getattr(subprocess, "CREATE_NEW_CONSOLE", 0)
    return [subprocess.Popen(list(command), creationflags=flags) for _ in range(count)]


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the chat server.")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=PORT)
    parser.add_argument("--max-clients", type=int, default=MAX_CLIENTS)
    parser.add_argument("--clients", type=int, default=CLIENT_INSTANCES,
                        help="number of client processes to launch")
    args = parser.parse_args(argv)

    server = ChatServer(args.host, args.port, args.max_clients)
    try:
        server.start()
    except OSError as exc:
        print(f"Ошибка привязки сокета: {exc}", file=sys.stderr)
        return 1

    try:
        launch_clients(args.clients)
    except OSError:
        print("Ошибка запуска клиентского процесса", file=sys.stderr)
        server.shutdown()
        return 1

    print("Сервер запущен. Ожидание подключений...")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.shutdown()
    print("Сервер остановлен.")
    return 0


if __name__ == "__main__":
    sys.exit(main())