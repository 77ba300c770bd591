#!/usr/bin/env python3
"""
Desktop Trampoline (Client)
Stand-in for a command (e.g. a git askpass or credential helper).

Responsibilities:
- Connect to the host application's server on loopback
- Forward argv, allow-listed environment variables and stdin
- Relay the server's stdout/stderr to our own streams
- Exit 0 on a complete round-trip, 1 on any failure
"""

import enum
import os
import socket
import sys
from typing import BinaryIO, Iterable, List, Mapping, Optional, Union

# Local modules
from .config import DEFAULT_HOST, load_config
from .environment import filter_environment
from .errors import LocalIOError, TrampolineError, TransportError
from .protocol import (
    RESPONSE_CAPACITY,
    STDIN_CHUNK_SIZE,
    STDIN_TERMINATOR,
    read_string,
    send_string,
)


class State(enum.Enum):
    """Session phases, always visited in this order."""
    CONNECT = "connect"
    SEND_ARG_COUNT = "send_arg_count"
    SEND_ARGS = "send_args"
    SEND_ENV_COUNT = "send_env_count"
    SEND_ENV = "send_env"
    RELAY_STDIN = "relay_stdin"
    SEND_STDIN_TERMINATOR = "send_stdin_terminator"
    RECV_STDOUT = "recv_stdout"
    RECV_STDERR = "recv_stderr"
    CLOSE = "close"


def _stdin_fileno(stdin) -> Optional[int]:
    if stdin is None or isinstance(stdin, int):
        return stdin
    try:
        return stdin.fileno()
    except (AttributeError, OSError, ValueError):
        return None


def _write_stream(stream: BinaryIO, data: bytes, what: str) -> None:
    try:
        stream.write(data)
        stream.flush()
    except OSError as e:
        raise LocalIOError(f"Couldn't write {what}: {e}") from e


class Trampoline:
    def __init__(self, port: int, host: str = DEFAULT_HOST, debug: bool = False,
                 capacity: int = RESPONSE_CAPACITY):
        self.host = host
        self.port = port
        self.debug = debug
        self.capacity = capacity
        self.sock: Optional[socket.socket] = None
        self.state = State.CONNECT
        self.failed_state: Optional[State] = None

    def _trace(self, msg: str):
        if self.debug:
            print(f"[i] {msg}", file=sys.stderr, flush=True)

    def connect(self):
        """Open the TCP connection to the server. No retries."""
        self.state = State.CONNECT
        try:
            self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        except OSError as e:
            raise TransportError(f"Couldn't create TCP socket: {e}") from e

        try:
            self.sock.connect((self.host, self.port))
        except OSError as e:
            raise TransportError(f"Couldn't connect to {self.host}:{self.port}: {e}") from e
        self._trace(f"Connected to {self.host}:{self.port}")

    def close(self):
        self.state = State.CLOSE
        if self.sock is not None:
            self.sock.close()
            self.sock = None

    def _send_raw(self, data: bytes, what: str):
        try:
            self.sock.sendall(data)
        except OSError as e:
            raise TransportError(f"Couldn't send {what}: {e}") from e

    def send_arguments(self, argv: List[Union[str, bytes]]):
        """Send the argument count followed by each argument."""
        self.state = State.SEND_ARG_COUNT
        send_string(self.sock, str(len(argv)), "number of arguments")

        self.state = State.SEND_ARGS
        for arg in argv:
            send_string(self.sock, arg, "argument")
        self._trace(f"Sent {len(argv)} argument(s)")

    def send_environment(self, environ: Union[Mapping[str, str], Iterable[str]]):
        """Send the count of allow-listed variables followed by each entry."""
        entries = filter_environment(environ)

        self.state = State.SEND_ENV_COUNT
        send_string(self.sock, str(len(entries)), "number of environment variables")

        self.state = State.SEND_ENV
        for entry in entries:
            send_string(self.sock, entry, "environment variable")
        self._trace(f"Sent {len(entries)} environment variable(s)")

    def _forward_stdin(self, fd: int) -> int:
        total = 0
        while True:
            try:
                chunk = os.read(fd, STDIN_CHUNK_SIZE)
            except OSError as e:
                if total == 0:
                    # Nothing was piped in (or nothing yet): don't wait for it.
                    self._trace("No stdin content found, continuing...")
                    break
                raise LocalIOError(f"Error reading stdin data: {e}") from e

            if not chunk:
                break

            self._send_raw(chunk, "stdin data")
            total += len(chunk)
        return total

    def relay_stdin(self, stdin=None) -> int:
        """
        Stream stdin to the server, then send the terminator byte.

        stdin is read non-blocking so a trampoline launched without any
        input does not hang waiting for it. Returns the number of bytes
        forwarded.
        """
        self.state = State.RELAY_STDIN
        fd = _stdin_fileno(stdin)
        total = 0

        if fd is not None:
            try:
                was_blocking = os.get_blocking(fd)
            except OSError:
                fd = None

        if fd is not None:
            os.set_blocking(fd, False)
            try:
                total = self._forward_stdin(fd)
            finally:
                os.set_blocking(fd, was_blocking)
        self._trace(f"Forwarded {total} byte(s) of stdin")

        self.state = State.SEND_STDIN_TERMINATOR
        self._send_raw(STDIN_TERMINATOR, "stdin terminator")
        return total

    def receive_output(self, what: str) -> bytes:
        """Read one response string (stdout or stderr of the remote command)."""
        try:
            return read_string(self.sock, self.capacity)
        except TrampolineError as e:
            raise type(e)(f"Couldn't read {what} from socket: {e}") from e

    def run(self, argv, environ, stdin=None,
            stdout: Optional[BinaryIO] = None, stderr: Optional[BinaryIO] = None):
        """
        Run one full session. Raises TrampolineError on any failure; the
        socket is closed on every path.
        """
        stdout = stdout if stdout is not None else sys.stdout.buffer
        stderr = stderr if stderr is not None else sys.stderr.buffer

        try:
            self.connect()
            self.send_arguments(argv)
            self.send_environment(environ)
            self.relay_stdin(stdin)

            self.state = State.RECV_STDOUT
            _write_stream(stdout, self.receive_output("stdout"), "stdout")

            self.state = State.RECV_STDERR
            _write_stream(stderr, self.receive_output("stderr"), "stderr")
        except TrampolineError:
            self.failed_state = self.state
            self._trace(f"Session aborted during {self.state.value}")
            raise
        finally:
            self.close()


def run_trampoline(argv, environ, stdin=None,
                   stdout: Optional[BinaryIO] = None,
                   stderr: Optional[BinaryIO] = None) -> int:
    """Configure and run one invocation. Returns the process exit code."""
    try:
        config = load_config(environ)
        trampoline = Trampoline(config.port, host=config.host, debug=config.debug)
        trampoline.run(argv, environ, stdin=stdin, stdout=stdout, stderr=stderr)
    except TrampolineError as e:
        print(f"ERROR: {e}", file=sys.stderr, flush=True)
        return 1
    return 0


def main():
    sys.exit(run_trampoline(sys.argv[1:], os.environ, stdin=sys.stdin))


if __name__ == "__main__":
    main()
