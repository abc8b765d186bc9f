"""Pytest configuration and shared fixtures for utmeta tests."""

from __future__ import annotations

import hashlib
import logging
import socket
import struct
import threading
from typing import Any, Callable

import pytest
from hypothesis import HealthCheck, settings

from utmeta.config import config as config_module
from utmeta.config.config import ENV_MAPPINGS
from utmeta.core.bencode import encode
from utmeta.models import Config, NetworkConfig

REMOTE_PEER_ID = b"-RM0001-remotepeer01"
LOCAL_PEER_ID = b"-UM0100-localpeer001"
PIECE_SIZE = 16384

# Autouse fixtures below are function scoped and reset state Hypothesis never mutates.
settings.register_profile(
    "utmeta", suppress_health_check=[HealthCheck.function_scoped_fixture]
)
settings.load_profile("utmeta")


def pytest_configure(config):
    """Register all project markers to avoid warnings when ini isn't loaded."""
    markers = [
        ("unit", "marks tests as unit tests"),
        ("metadata", "marks tests as metadata exchange tests"),
        ("property", "marks tests as property-based tests"),
        ("cli", "marks tests as CLI tests"),
        ("network", "marks tests that open localhost sockets"),
    ]
    for name, desc in markers:
        config.addinivalue_line("markers", f"{name}: {desc}")


@pytest.fixture(autouse=True)
def cleanup_logging():
    """Clean up logging handlers after each test to prevent closed file errors."""
    yield
    for logger_name in list(logging.Logger.manager.loggerDict.keys()):
        logger = logging.getLogger(logger_name)
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Keep tests away from user config files, UTMETA_* variables and globals."""
    for env_name in ENV_MAPPINGS:
        monkeypatch.delenv(env_name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setattr(config_module, "_config_manager", None)


@pytest.fixture
def fast_config() -> Config:
    """Configuration with short deadlines for localhost peers."""
    return Config(
        network=NetworkConfig(
            dial_timeout=2.0,
            handshake_timeout=2.0,
            metadata_timeout=5.0,
        )
    )


# Wire helpers used by the fake peer scripts


def frame(payload: bytes) -> bytes:
    """Prefix ``payload`` with its 4-byte big-endian length."""
    return struct.pack("!I", len(payload)) + payload


def handshake_bytes(
    info_hash: bytes,
    peer_id: bytes = REMOTE_PEER_ID,
    extensions: bool = True,
    protocol: bytes = b"BitTorrent protocol",
) -> bytes:
    """Build a 68-byte base handshake as a remote peer would send it."""
    reserved = bytearray(8)
    if extensions:
        reserved[5] |= 0x10
    return bytes([len(protocol)]) + protocol + bytes(reserved) + info_hash + peer_id


def extension_handshake(fields: dict[str, Any]) -> bytes:
    """Extended handshake payload (without length prefix)."""
    return bytes((20, 0)) + encode(fields)


def piece_message(
    index: int,
    data: bytes = b"",
    msg_type: int = 1,
    sub_id: int = 1,
    total_size: int | None = None,
) -> bytes:
    """ut_metadata reply payload (without length prefix)."""
    header: dict[str, Any] = {"msg_type": msg_type, "piece": index}
    if total_size is not None:
        header["total_size"] = total_size
    return bytes((20, sub_id)) + encode(header) + data


def split_pieces(metadata: bytes) -> list[bytes]:
    return [metadata[i : i + PIECE_SIZE] for i in range(0, len(metadata), PIECE_SIZE)]


def make_info_dict(name: str = "example.iso", length: int = 123456) -> bytes:
    """Bencoded single-file info dictionary."""
    return encode(
        {
            "name": name,
            "length": length,
            "piece length": 262144,
            "pieces": b"\xab" * 20,
        }
    )


class PeerWire:
    """Blocking helpers for the accepted side of a fake peer connection."""

    def __init__(self, sock: socket.socket, peer: FakePeer):
        self.sock = sock
        self.peer = peer

    def recv_exact(self, n: int) -> bytes:
        buf = bytearray()
        while len(buf) < n:
            chunk = self.sock.recv(n - len(buf))
            if not chunk:
                msg = f"client closed after {len(buf)} of {n} bytes"
                raise ConnectionError(msg)
            buf += chunk
        return bytes(buf)

    def recv_handshake(self) -> bytes:
        data = self.recv_exact(68)
        self.peer.received_handshake = data
        return data

    def recv_frame(self) -> bytes:
        (length,) = struct.unpack("!I", self.recv_exact(4))
        payload = self.recv_exact(length) if length else b""
        self.peer.received_frames.append(payload)
        return payload

    def send(self, data: bytes) -> None:
        self.sock.sendall(data)

    def send_frame(self, payload: bytes) -> None:
        self.send(frame(payload))

    def drain(self) -> None:
        """Consume whatever the client still sends until it closes."""
        try:
            while True:
                self.recv_frame()
        except OSError:
            return


class FakePeer:
    """A scripted peer listening on 127.0.0.1 that serves one connection."""

    def __init__(self, script: Callable[[PeerWire], None]):
        self._script = script
        self._server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._server.bind(("127.0.0.1", 0))
        self._server.listen(1)
        self._server.settimeout(5.0)
        self.port = self._server.getsockname()[1]
        self.received_handshake: bytes | None = None
        self.received_frames: list[bytes] = []
        self.error: BaseException | None = None
        self._thread = threading.Thread(target=self._serve, daemon=True)

    @property
    def address(self) -> str:
        return f"127.0.0.1:{self.port}"

    def start(self) -> FakePeer:
        self._thread.start()
        return self

    def _serve(self) -> None:
        try:
            conn, _ = self._server.accept()
        except OSError as e:
            self.error = e
            return
        with conn:
            conn.settimeout(5.0)
            wire = PeerWire(conn, self)
            try:
                self._script(wire)
            except OSError as e:
                self.error = e
            wire.drain()

    def stop(self) -> None:
        self._server.close()
        self._thread.join(timeout=10.0)


@pytest.fixture
def fake_peer():
    """Factory starting a :class:`FakePeer` for a script; stopped at teardown."""
    peers: list[FakePeer] = []

    def _start(script: Callable[[PeerWire], None]) -> FakePeer:
        peer = FakePeer(script).start()
        peers.append(peer)
        return peer

    yield _start
    for peer in peers:
        peer.stop()


def serve_metadata(
    metadata: bytes,
    info_hash: bytes | None = None,
    order: list[int] | None = None,
    ut_metadata: int = 3,
    before_reply: tuple[bytes, ...] = (),
) -> Callable[[PeerWire], None]:
    """Script for a well-behaved peer that serves ``metadata``."""
    if info_hash is None:
        info_hash = hashlib.sha1(metadata).digest()
    pieces = split_pieces(metadata)

    def script(wire: PeerWire) -> None:
        wire.recv_handshake()
        wire.send(handshake_bytes(info_hash))
        wire.recv_frame()
        for payload in before_reply:
            wire.send_frame(payload)
        wire.send_frame(
            extension_handshake(
                {"m": {"ut_metadata": ut_metadata}, "metadata_size": len(metadata)}
            )
        )
        for _ in pieces:
            wire.recv_frame()
        for index in order if order is not None else range(len(pieces)):
            wire.send_frame(piece_message(index, pieces[index], total_size=len(metadata)))

    return script
