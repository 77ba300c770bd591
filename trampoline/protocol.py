"""
Trampoline Protocol Definitions
Wire format for trampoline <-> server communication.

One exchange per TCP connection, always in this order:

  1. send  frame        number of arguments (decimal, program name excluded)
  2. send  frame x N    each argument
  3. send  frame        number of forwarded environment variables (decimal)
  4. send  frame x M    each "NAME=value" entry
  5. send  raw stream   all of stdin, then a single 0x00 byte
  6. recv  frame        stdout of the command the server ran
  7. recv  frame        stderr of the command the server ran

Frame format:
  <2-byte unsigned length, little-endian><payload>

Strings are sent NUL-terminated and the terminator counts towards the
length, so frame("2") is b"\\x02\\x00" b"2\\x00".
"""

import os
import socket
from typing import Union

from .errors import ProtocolError, TransportError

LENGTH_PREFIX_SIZE = 2
MAX_FRAME_LENGTH = 0xFFFF

# Size of the receive buffer for each response string. Anything larger
# is rejected rather than truncated.
RESPONSE_CAPACITY = 4096

STDIN_CHUNK_SIZE = 4096
STDIN_TERMINATOR = b"\0"


def encode_string(value: Union[str, bytes]) -> bytes:
    """
    Build a frame for a NUL-terminated string.

    str values are encoded like the OS encodes argv/environ (os.fsencode),
    so undecodable bytes round-trip unchanged.
    """
    payload = os.fsencode(value) + b"\0"
    if len(payload) > MAX_FRAME_LENGTH:
        raise ProtocolError(
            f"String too long to send ({len(payload)} > {MAX_FRAME_LENGTH} bytes)"
        )
    return len(payload).to_bytes(LENGTH_PREFIX_SIZE, "little") + payload


def send_string(sock: socket.socket, value: Union[str, bytes], what: str = "string") -> None:
    """Send one framed string. A short or failed write is fatal."""
    try:
        frame = encode_string(value)
    except ProtocolError as e:
        raise ProtocolError(f"Couldn't send {what}: {e}") from e

    try:
        sock.sendall(frame)
    except OSError as e:
        raise TransportError(f"Couldn't send {what}: {e}") from e


def _recv_length(sock: socket.socket) -> int:
    raw_len = b""
    while len(raw_len) < LENGTH_PREFIX_SIZE:
        try:
            chunk = sock.recv(LENGTH_PREFIX_SIZE - len(raw_len))
        except OSError as e:
            raise TransportError(f"Error reading from socket: {e}") from e
        if not chunk:
            raise TransportError(
                f"Error reading from socket: connection closed after "
                f"{len(raw_len)} of {LENGTH_PREFIX_SIZE} length bytes"
            )
        raw_len += chunk
    return int.from_bytes(raw_len, "little")


def read_string(sock: socket.socket, capacity: int = RESPONSE_CAPACITY) -> bytes:
    """
    Receive one framed string.

    The declared length is checked against capacity before any payload is
    read. The payload is then accumulated across partial reads until it is
    complete or the peer stops sending, and cut at the first NUL.
    """
    length = _recv_length(sock)
    if length > capacity:
        raise ProtocolError(
            f"Received string is bigger than buffer ({length} > {capacity})"
        )

    chunks = []
    remaining = length
    while remaining > 0:
        try:
            chunk = sock.recv(remaining)
        except OSError as e:
            raise TransportError(f"Error reading from socket: {e}") from e
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)

    return b"".join(chunks).split(b"\0", 1)[0]
