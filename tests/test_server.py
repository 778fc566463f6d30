import socket
import sys
import threading
import time
from collections import deque
from contextlib import contextmanager

import pytest

from lanchat.protocol import (
    ACCEPT_MESSAGE,
    JOIN_TEMPLATE,
    LEAVE_TEMPLATE,
    WAIT_MESSAGE,
    ColorMessage,
    color_for,
    encode_frame,
    parse_message,
    split_frames,
)
from lanchat.server import ChatServer, launch_clients, main


class _Peer:
    def __init__(self, address):
        self.sock = socket.create_connection(address, timeout=5)
        self.pending = b""
        self.frames = deque()

    def next(self):
        while not self.frames:
            chunk = self.sock.recv(1024)
            if not chunk:
                raise ConnectionError("closed")
            frames, self.pending = split_frames(self.pending + chunk)
            self.frames.extend(frames)
        return self.frames.popleft()

    def until(self, text):
        seen = []
        while True:
            frame = self.next()
            seen.append(frame)
            if frame == text:
                return seen

    def send(self, text):
        self.sock.sendall(encode_frame(text))

    def close(self):
        self.sock.close()


def _eventually(check, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if check():
            return True
        time.sleep(0.02)
    return check()


@contextmanager
def _running(max_clients=2):
    server = ChatServer("127.0.0.1", 0, max_clients)
    address = server.start()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield server, address
    finally:
        server.shutdown()
        thread.join(5)


def test_first_frame_assigns_color():
    with _running() as (server, address):
        peer = _Peer(address)
        message = parse_message(peer.next())
        assert message == ColorMessage(color_for(1))
        assert _eventually(lambda: server.client_count() == 1)
        peer.close()


def test_messages_are_broadcast_to_others():
    with _running() as (server, address):
        alice = _Peer(address)
        alice.next()
        alice.send("Alice")
        assert _eventually(lambda: JOIN_TEMPLATE.format(name="Alice") in server.history())

        bob = _Peer(address)
        bob.next()
        bob.send("Bob")
        alice.until(JOIN_TEMPLATE.format(name="Bob"))

        alice.send("hello")
        seen = bob.until("Alice: hello\n")
        assert seen[-1] == "Alice: hello\n"
        assert _eventually(lambda: server.history()[-1] == "Alice: hello\n")
        assert server.history()[:2] == [
            JOIN_TEMPLATE.format(name="Alice"),
            JOIN_TEMPLATE.format(name="Bob"),
        ]
        alice.close()
        bob.until(LEAVE_TEMPLATE.format(name="Alice"))
        assert _eventually(lambda: server.client_count() == 1)
        bob.close()


def test_new_client_receives_history():
    with _running() as (server, address):
        alice = _Peer(address)
        alice.next()
        alice.send("Alice")
        alice.send("hi")
        assert _eventually(lambda: "Alice: hi\n" in server.history())

        carol = _Peer(address)
        assert isinstance(parse_message(carol.next()), ColorMessage)
        assert carol.next() == JOIN_TEMPLATE.format(name="Alice")
        assert carol.next() == "Alice: hi\n"
        alice.close()
        carol.close()


def test_waiting_queue_admits_after_leave():
    with _running(max_clients=1) as (server, address):
        alice = _Peer(address)
        alice.next()
        alice.send("Alice")

        bob = _Peer(address)
        assert bob.next() == WAIT_MESSAGE
        assert server.queue_size() == 1
        assert server.client_count() == 1

        assert _eventually(lambda: JOIN_TEMPLATE.format(name="Alice") in server.history())
        alice.close()
        assert bob.next() == ACCEPT_MESSAGE
        assert isinstance(parse_message(bob.next()), ColorMessage)
        assert _eventually(lambda: server.queue_size() == 0 and server.client_count() == 1)
        assert LEAVE_TEMPLATE.format(name="Alice") in server.history()
        bob.close()


def test_disconnect_before_name_frees_slot():
    with _running(max_clients=1) as (server, address):
        ghost = _Peer(address)
        ghost.next()
        ghost.close()
        assert _eventually(lambda: server.client_count() == 0)
        assert server.history() == []


def test_serve_forever_requires_start():
    with pytest.raises(RuntimeError):
        ChatServer("127.0.0.1", 0, 2).serve_forever()


def test_launch_clients_runs_command():
    processes = launch_clients(2, [sys.executable, "-c", "pass"])
    assert len(processes) == 2
    assert [p.wait(timeout=30) for p in processes] == [0, 0]


def test_launch_clients_missing_program():
    with pytest.raises(OSError):
        launch_clients(1, ["lanchat-no-such-program-xyz"])


def test_main_fails_when_port_busy():
    busy = socket.socket()
    busy.bind(("127.0.0.1", 0))
    busy.listen(1)
    try:
        port = busy.getsockname()[1]
        assert main(["--host", "127.0.0.1", "--port", str(port), "--clients", "0"]) == 1
    finally:
        busy.close()