"""Length-prefixed framing over a blocking socket.

After the base handshake every peer wire message is a 4-byte big-endian
length followed by that many payload bytes. All I/O honours a deadline
set by the caller; once any operation fails the transport must not be
reused.
"""

from __future__ import annotations

import logging
import socket
import struct
import time

from utmeta.utils.exceptions import (
    FrameSizeError,
    PeerConnectionError,
    PeerTimeoutError,
)

logger = logging.getLogger(__name__)

LENGTH_PREFIX = struct.Struct("!I")
# Largest legitimate frame is a metadata piece or a bitfield, far below this.
DEFAULT_MAX_FRAME_SIZE = 4 * 1024 * 1024


class FrameTransport:
    """Framed, deadline-aware reads and writes on one connection."""

    def __init__(
        self,
        sock: socket.socket,
        max_frame_size: int = DEFAULT_MAX_FRAME_SIZE,
    ) -> None:
        """Initialize transport.

        Args:
            sock: Connected blocking socket; the transport takes ownership
            max_frame_size: Ceiling on a declared frame length

        """
        self._sock = sock
        self.max_frame_size = max_frame_size
        self._deadline: float | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether ``close()`` has been called."""
        return self._closed

    def set_deadline(self, seconds: float | None) -> None:
        """Apply an absolute deadline ``seconds`` from now to all later I/O."""
        self._deadline = None if seconds is None else time.monotonic() + seconds

    def _apply_timeout(self) -> None:
        if self._closed:
            msg = "Transport is closed"
            raise PeerConnectionError(msg)
        if self._deadline is None:
            self._sock.settimeout(None)
            return
        remaining = self._deadline - time.monotonic()
        if remaining <= 0:
            msg = "Deadline exceeded"
            raise PeerTimeoutError(msg)
        self._sock.settimeout(remaining)

    def write_raw(self, data: bytes) -> None:
        """Write ``data`` without framing."""
        self._apply_timeout()
        try:
            self._sock.sendall(data)
        except socket.timeout as e:
            msg = "Write timed out"
            raise PeerTimeoutError(msg) from e
        except OSError as e:
            msg = f"Write failed: {e}"
            raise PeerConnectionError(msg) from e

    def write_frame(self, payload: bytes) -> None:
        """Write ``payload`` prefixed with its 4-byte big-endian length."""
        self.write_raw(LENGTH_PREFIX.pack(len(payload)) + payload)

    def read_exact(self, n: int) -> bytes:
        """Read exactly ``n`` bytes or fail."""
        buf = bytearray()
        while len(buf) < n:
            self._apply_timeout()
            try:
                chunk = self._sock.recv(n - len(buf))
            except socket.timeout as e:
                msg = "Read timed out"
                raise PeerTimeoutError(msg, {"expected": n, "received": len(buf)}) from e
            except OSError as e:
                msg = f"Read failed: {e}"
                raise PeerConnectionError(msg) from e
            if not chunk:
                msg = "Connection closed"
                raise PeerConnectionError(msg, {"expected": n, "received": len(buf)})
            buf += chunk
        return bytes(buf)

    def read_frame(self) -> bytes:
        """Read one frame and return its payload (``b""`` for keep-alive)."""
        (length,) = LENGTH_PREFIX.unpack(self.read_exact(LENGTH_PREFIX.size))
        if length > self.max_frame_size:
            msg = "Frame too large"
            raise FrameSizeError(msg, {"length": length, "max": self.max_frame_size})
        if length == 0:
            return b""
        return self.read_exact(length)

    def close(self) -> None:
        """Close the underlying socket."""
        if self._closed:
            return
        self._closed = True
        try:
            self._sock.close()
        except OSError as e:
            logger.debug("Error closing peer socket: %s", e)
