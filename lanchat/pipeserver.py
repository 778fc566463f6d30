"""Local server that starts client processes and collects their start-up reports.

Each client process is started with its lifetime in seconds as its only
argument (``0`` means it runs until it is closed). A client connects to one of
a fixed number of server instances and reports a native 4-byte little-endian
integer: ``1`` when it started successfully, anything else for an error.
"""

from __future__ import annotations

import argparse
import random
import selectors
import shlex
import socket
import subprocess
import sys
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

INSTANCES = 3
BUFSIZE = 512
PIPE_ADDRESS = ("127.0.0.1", 12346)
DEFAULT_COMMAND = ("Client.exe",)
REPORT_SIZE = 4
SUCCESS = 1
_POLL = 0.2


class PipeState(Enum):
    """Stage a server instance is in."""

    CONNECTING = 0
    READING = 1
    WRITING = 2


@dataclass(eq=False)
class PipeInstance:
    """One server slot that a single client can occupy at a time."""

    index: int
    lifetime: int
    state: PipeState = PipeState.CONNECTING
    connection: socket.socket | None = None
    pending: bytes = b""


def format_timestamp(moment: datetime) -> str:
    """Render a time of day as ``HH:MM:SS.mmm``."""
    return f"{moment:%H:%M:%S}.{moment.microsecond // 1000:03d}"


def _log(text: str) -> None:
    print(f"{format_timestamp(datetime.now())}\t{text}", flush=True)


def generate_lifetimes(count: int, rng: random.Random | None = None) -> list[int]:
    """Pick client lifetimes: 30% infinite (0), otherwise 5 to 17 seconds."""
    if count < 0:
        raise ValueError("count must not be negative")
    rng = rng if rng is not None else random.Random()
    return [0 if rng.randrange(10) < 3 else 5 + rng.randrange(13) for _ in range(count)]


def describe_lifetime(lifetime: int) -> str:
    """Human-readable form of a client lifetime."""
    return f"{lifetime} (infinite)" if lifetime == 0 else f"{lifetime} seconds"


def launch_client(lifetime: int, command: Sequence[str] = DEFAULT_COMMAND) -> subprocess.Popen:
    """Start one client process with its lifetime; raises OSError on failure."""
    if lifetime < 0:
        raise ValueError("lifetime must not be negative")
    process = subprocess.Popen([*command, str(lifetime)])
    _log(f"[SERVER] Launched client with lifetime: {describe_lifetime(lifetime)}")
    return process


class PipeServer:
    """Serves one instance per client and logs what each client reports."""

    def __init__(
        self,
        address: tuple[str, int] = PIPE_ADDRESS,
        lifetimes: Sequence[int] | None = None,
        command: Sequence[str] | None = None,
    ):
        if lifetimes is None:
            lifetimes = generate_lifetimes(INSTANCES)
        if not lifetimes:
            raise ValueError("at least one instance is required")
        if any(lifetime < 0 for lifetime in lifetimes):
            raise ValueError("lifetimes must not be negative")
        self.requested_address = address
        self.command = list(command) if command is not None else None
        self.instances = [PipeInstance(i, lifetime) for i, lifetime in enumerate(lifetimes)]
        self.processes: list[subprocess.Popen] = []
        self.reports: list[tuple[int, int]] = []
        self._listener: socket.socket | None = None
        self._selector: selectors.BaseSelector | None = None
        self._stop = threading.Event()

    @property
    def address(self) -> tuple[str, int]:
        if self._listener is None:
            raise RuntimeError("server is not started")
        return self._listener.getsockname()[:2]

    def start(self) -> tuple[str, int]:
        """Open the instances, launch the clients and return the bound address."""
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            listener.bind(self.requested_address)
            listener.listen(len(self.instances))
            if self.command is not None:
                for instance in self.instances:
                    self.processes.append(launch_client(instance.lifetime, self.command))
        except OSError:
            listener.close()
            raise
        self._listener = listener
        self._selector = selectors.DefaultSelector()
        self._selector.register(listener, selectors.EVENT_READ, None)
        _log("[SERVER] Ready for connections")
        return self.address

    def handle_report(self, index: int, value: int) -> str:
        """Record a client's start-up report and return the logged line."""
        if not 0 <= index < len(self.instances):
            raise IndexError("Index out of range")
        self.reports.append((index, value))
        if value == SUCCESS:
            line = f"[SERVER] Client {index} successfully started"
        else:
            line = f"[WARNING] Client {index} reported error"
        _log(line)
        return line

    def run(self) -> None:
        """Serve clients until :meth:`stop` is called, then close everything."""
        if self._selector is None:
            raise RuntimeError("server is not started")
        try:
            while not self._stop.is_set():
                for key, _ in self._selector.select(_POLL):
                    if key.data is None:
                        self._accept()
                    else:
                        self._read(key.data)
        finally:
            self._close()

    def stop(self) -> None:
        self._stop.set()

    def _accept(self) -> None:
        assert self._listener is not None and self._selector is not None
        try:
            conn, _ = self._listener.accept()
        except OSError as exc:
            _log(f"[ERROR] Accept failed: {exc}")
            return
        instance = next((p for p in self.instances if p.state is PipeState.CONNECTING), None)
        if instance is None:
            _log("[ERROR] No free instance for client")
            conn.close()
            return
        instance.connection = conn
        instance.pending = b""
        instance.state = PipeState.READING
        self._selector.register(conn, selectors.EVENT_READ, instance)
        _log(f"[SERVER] Client {instance.index} connected")

    def _read(self, instance: PipeInstance) -> None:
        assert instance.connection is not None
        try:
            data = instance.connection.recv(BUFSIZE)
        except OSError:
            data = b""
        if not data:
            self._reconnect(instance)
            return
        instance.pending += data
        while len(instance.pending) >= REPORT_SIZE:
            chunk, instance.pending = instance.pending[:REPORT_SIZE], instance.pending[REPORT_SIZE:]
            self.handle_report(instance.index, int.from_bytes(chunk, "little", signed=True))

    def _reconnect(self, instance: PipeInstance) -> None:
        self._disconnect(instance)
        instance.state = PipeState.CONNECTING

    def _disconnect(self, instance: PipeInstance) -> None:
        conn = instance.connection
        if conn is None:
            return
        if self._selector is not None:
            try:
                self._selector.unregister(conn)
            except (KeyError, ValueError):
                pass
        conn.close()
        instance.connection = None
        instance.pending = b""

    def _close(self) -> None:
        for instance in self.instances:
            self._disconnect(instance)
        if self._selector is not None:
            self._selector.close()
            self._selector = None
        if self._listener is not None:
            self._listener.close()
            self._listener = None
        _log("[SERVER] Shutdown complete")


def _watch_keyboard(server: PipeServer) -> None:
    if sys.stdin.read(1):
        _log("[SERVER] Key pressed. Shutting down...")
        server.stop()


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Launch clients and collect their reports.")
    parser.add_argument("--host", default=PIPE_ADDRESS[0])
    parser.add_argument("--port", type=int, default=PIPE_ADDRESS[1])
    parser.add_argument("--instances", type=int, default=INSTANCES)
    parser.add_argument("--command", default=" ".join(DEFAULT_COMMAND),
                        help="client command; the lifetime is appended")
    parser.add_argument("--linger", type=float, default=10.0,
                        help="seconds to wait after shutdown")
    args = parser.parse_args(argv)

    try:
        server = PipeServer((args.host, args.port), generate_lifetimes(args.instances),
                            shlex.split(args.command))
        server.start()
    except ValueError as exc:
        _log(f"[ERROR] {exc}")
        return 1
    except OSError as exc:
        _log(f"[ERROR] Start failed: {exc}")
        return 1

    threading.Thread(target=_watch_keyboard, args=(server,), daemon=True).start()
    try:
        server.run()
    except KeyboardInterrupt:
        pass
    time.sleep(args.linger)
    return 0


if __name__ == "__main__":
    sys.exit(main())