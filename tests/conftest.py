"""
Shared fixtures: a fake host-application server and stdin pipes.

The fake server accepts a single trampoline connection on an ephemeral
loopback port, parses the request the way the real server does, records
every byte it received and answers with canned frames.
"""

import os
import socket
import threading
from dataclasses import dataclass
from typing import List, Optional

import pytest

from trampoline.protocol import encode_string


@dataclass
class Request:
    args: List[bytes]
    env: List[bytes]
    stdin: bytes


class FakeDesktopServer:
    def __init__(self, stdout: bytes = b"", stderr: bytes = b"", raw_reply: Optional[bytes] = None):
        if raw_reply is None:
            raw_reply = encode_string(stdout) + encode_string(stderr)
        self.raw_reply = raw_reply
        self.received = bytearray()
        self.connections = 0
        self.request: Optional[Request] = None
        self.error: Optional[Exception] = None

        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.listen(1)
        self.port = self.sock.getsockname()[1]
        self.thread = threading.Thread(target=self._serve, daemon=True)

    def start(self) -> "FakeDesktopServer":
        self.thread.start()
        return self

    def wait(self) -> "FakeDesktopServer":
        """Wait until the single connection has been handled."""
        self.thread.join(timeout=5)
        return self

    def stop(self):
        self.wait()
        self.sock.close()

    def _recv_exact(self, conn: socket.socket, n: int) -> bytes:
        data = b""
        while len(data) < n:
            chunk = conn.recv(n - len(data))
            if not chunk:
                raise ConnectionError("client closed the connection")
            self.received += chunk
            data += chunk
        return data

    def _read_frame(self, conn: socket.socket) -> bytes:
        length = int.from_bytes(self._recv_exact(conn, 2), "little")
        payload = self._recv_exact(conn, length)
        assert payload.endswith(b"\0"), payload
        return payload[:-1]

    def _serve(self):
        conn, _ = self.sock.accept()
        with conn:
            self.connections += 1
            try:
                argc = int(self._read_frame(conn))
                args = [self._read_frame(conn) for _ in range(argc)]
                envc = int(self._read_frame(conn))
                env = [self._read_frame(conn) for _ in range(envc)]

                stdin = bytearray()
                while True:
                    byte = self._recv_exact(conn, 1)
                    if byte == b"\0":
                        break
                    stdin += byte

                self.request = Request(args, env, bytes(stdin))
                conn.sendall(self.raw_reply)
            except (AssertionError, OSError, ValueError) as e:
                self.error = e


@pytest.fixture
def fake_server():
    servers = []

    def _start(**kwargs) -> FakeDesktopServer:
        server = FakeDesktopServer(**kwargs).start()
        servers.append(server)
        return server

    yield _start
    for server in servers:
        server.stop()


@pytest.fixture
def unused_port() -> int:
    """A loopback port with nothing listening on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.fixture
def stdin_pipe():
    """
    Factory for a stdin read end.

    With data=None the write end stays open and empty, i.e. a read
    would block. Otherwise data is written and the write end closed.
    """
    fds = []

    def _make(data: Optional[bytes] = None) -> int:
        read_fd, write_fd = os.pipe()
        fds.append(read_fd)
        if data is None:
            fds.append(write_fd)
        else:
            os.write(write_fd, data)
            os.close(write_fd)
        return read_fd

    yield _make
    for fd in fds:
        os.close(fd)
