"""Base handshake (BEP 3) and extension handshake (BEP 10).

The negotiator runs both exchanges back to back, each under its own
deadline, and yields the peer's ut_metadata parameters (BEP 9).
"""

from __future__ import annotations

import logging
import math
import struct
from dataclasses import dataclass
from typing import Any

from utmeta.core.bencode import BencodeDecoder, BencodeEncoder
from utmeta.transport.frame import FrameTransport
from utmeta.utils.exceptions import (
    BencodeDecodeError,
    ExtensionError,
    ExtensionUnsupportedError,
    InfoHashMismatchError,
    MetadataSizeMissingError,
    MetadataSizeNegativeError,
    MetadataSizeTooLargeError,
    MissingHandshakeMapError,
    MissingUtMetadataError,
    ProtocolMismatchError,
    ValidationError,
)

logger = logging.getLogger(__name__)

PROTOCOL_STRING = b"BitTorrent protocol"
HANDSHAKE_LENGTH = 68
EXT_PROTOCOL_FLAG_BYTE = 5  # reserved[5] |= 0x10
EXT_PROTOCOL_FLAG_MASK = 0x10

EXTENDED_MESSAGE_ID = 20
EXTENDED_HANDSHAKE_ID = 0
# Sub-id we announce for ut_metadata; peers label their replies with it.
LOCAL_METADATA_ID = 1

METADATA_PIECE_SIZE = 16384
MAX_METADATA_PIECES = 1024
MAX_METADATA_SIZE = METADATA_PIECE_SIZE * MAX_METADATA_PIECES

MAX_SKIPPED_FRAMES = 10
DEFAULT_HANDSHAKE_TIMEOUT = 5.0


@dataclass(frozen=True)
class ExtensionParameters:
    """ut_metadata parameters announced by the peer."""

    metadata_size: int
    peer_metadata_id: int

    @property
    def piece_count(self) -> int:
        """Number of 16 KiB metadata pieces."""
        return math.ceil(self.metadata_size / METADATA_PIECE_SIZE)


class Handshake:
    """BitTorrent handshake message with the extension protocol bit set."""

    def __init__(
        self,
        info_hash: bytes,
        peer_id: bytes,
        reserved: bytes | None = None,
    ) -> None:
        """Initialize handshake.

        Args:
            info_hash: 20-byte SHA-1 hash of info dictionary
            peer_id: 20-byte peer ID
            reserved: 8 reserved bytes; defaults to only the extension bit set

        """
        if len(info_hash) != 20:
            msg = f"Info hash must be 20 bytes, got {len(info_hash)}"
            raise ValidationError(msg)
        if len(peer_id) != 20:
            msg = f"Peer ID must be 20 bytes, got {len(peer_id)}"
            raise ValidationError(msg)
        if reserved is None:
            flags = bytearray(8)
            flags[EXT_PROTOCOL_FLAG_BYTE] |= EXT_PROTOCOL_FLAG_MASK
            reserved = bytes(flags)
        elif len(reserved) != 8:
            msg = f"Reserved must be 8 bytes, got {len(reserved)}"
            raise ValidationError(msg)

        self.info_hash = info_hash
        self.peer_id = peer_id
        self.reserved = reserved

    @property
    def supports_extensions(self) -> bool:
        """Whether the BEP 10 extension bit is set."""
        return bool(self.reserved[EXT_PROTOCOL_FLAG_BYTE] & EXT_PROTOCOL_FLAG_MASK)

    def encode(self) -> bytes:
        """Encode handshake to bytes.

        Format: <protocol len><protocol><reserved><info_hash><peer_id>
        Total: 1 + 19 + 8 + 20 + 20 = 68 bytes
        """
        return (
            struct.pack("B", len(PROTOCOL_STRING))
            + PROTOCOL_STRING
            + self.reserved
            + self.info_hash
            + self.peer_id
        )

    @classmethod
    def decode(cls, data: bytes) -> Handshake:
        """Decode a 68-byte handshake.

        Raises:
            ProtocolMismatchError: If length or protocol string are wrong

        """
        if len(data) != HANDSHAKE_LENGTH:
            msg = f"Handshake must be {HANDSHAKE_LENGTH} bytes, got {len(data)}"
            raise ProtocolMismatchError(msg)
        if data[0] != len(PROTOCOL_STRING) or data[1:20] != PROTOCOL_STRING:
            msg = "Remote peer does not speak the BitTorrent protocol"
            raise ProtocolMismatchError(msg, {"prefix": data[:20]})
        return cls(data[28:48], data[48:68], reserved=data[20:28])


def encode_extended(sub_id: int, message: dict[str, Any]) -> bytes:
    """Build an extended message payload: ``20, sub_id, bencode(message)``."""
    return bytes((EXTENDED_MESSAGE_ID, sub_id)) + BencodeEncoder().encode(message)


def parse_extension_handshake(payload: bytes) -> ExtensionParameters:
    """Extract ut_metadata parameters from an extension handshake dictionary.

    Args:
        payload: Bencoded dictionary following the ``20, 0`` header

    Raises:
        ExtensionError: One subclass per missing or invalid field

    """
    try:
        data = BencodeDecoder(payload).decode()
    except BencodeDecodeError as e:
        msg = f"Malformed extension handshake: {e.message}"
        raise ExtensionError(msg) from e
    if not isinstance(data, dict):
        msg = "Extension handshake is not a dictionary"
        raise ExtensionError(msg)

    metadata_size = data.get(b"metadata_size")
    if not isinstance(metadata_size, int):
        msg = "Extension handshake has no metadata_size"
        raise MetadataSizeMissingError(msg)
    if metadata_size < 0:
        msg = "Negative metadata_size"
        raise MetadataSizeNegativeError(msg, {"metadata_size": metadata_size})
    if metadata_size > MAX_METADATA_SIZE:
        msg = "metadata_size too large"
        raise MetadataSizeTooLargeError(
            msg, {"metadata_size": metadata_size, "max": MAX_METADATA_SIZE}
        )

    m = data.get(b"m")
    if not isinstance(m, dict):
        msg = "Extension handshake has no 'm' dictionary"
        raise MissingHandshakeMapError(msg)

    ut_metadata = m.get(b"ut_metadata")
    if not isinstance(ut_metadata, int):
        msg = "Peer does not support ut_metadata"
        raise MissingUtMetadataError(msg)

    return ExtensionParameters(metadata_size=metadata_size, peer_metadata_id=ut_metadata)


class HandshakeNegotiator:
    """Runs the base and extension handshakes on a fresh connection."""

    def __init__(
        self,
        transport: FrameTransport,
        info_hash: bytes,
        peer_id: bytes,
        timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
    ) -> None:
        """Initialize negotiator."""
        self.transport = transport
        self.info_hash = info_hash
        self.peer_id = peer_id
        self.timeout = timeout

    def perform_handshake(self) -> bytes:
        """Exchange base handshakes and return the remote peer id.

        Raises:
            ProtocolMismatchError: Wrong protocol string
            ExtensionUnsupportedError: Extension bit not set
            InfoHashMismatchError: Peer echoed another info hash
            PeerConnectionError: I/O failure or short read

        """
        self.transport.set_deadline(self.timeout)
        self.transport.write_raw(Handshake(self.info_hash, self.peer_id).encode())

        remote = Handshake.decode(self.transport.read_exact(HANDSHAKE_LENGTH))
        if not remote.supports_extensions:
            msg = "Remote peer does not support the extension protocol"
            raise ExtensionUnsupportedError(msg)
        if remote.info_hash != self.info_hash:
            msg = "Remote peer answered for a different info hash"
            raise InfoHashMismatchError(
                msg, {"expected": self.info_hash.hex(), "got": remote.info_hash.hex()}
            )

        logger.debug("Base handshake complete, remote peer id %r", remote.peer_id)
        return remote.peer_id

    def perform_extension_handshake(self) -> ExtensionParameters:
        """Announce ut_metadata and read the peer's extension handshake."""
        self.transport.set_deadline(self.timeout)
        self.transport.write_frame(
            encode_extended(
                EXTENDED_HANDSHAKE_ID, {"m": {"ut_metadata": LOCAL_METADATA_ID}}
            )
        )

        # Peers may send bitfield/have/keep-alive before their reply.
        for _ in range(MAX_SKIPPED_FRAMES + 1):
            payload = self.transport.read_frame()
            if (
                len(payload) >= 2
                and payload[0] == EXTENDED_MESSAGE_ID
                and payload[1] == EXTENDED_HANDSHAKE_ID
            ):
                params = parse_extension_handshake(payload[2:])
                logger.debug(
                    "Extension handshake complete: metadata_size=%d ut_metadata=%d",
                    params.metadata_size,
                    params.peer_metadata_id,
                )
                return params
            logger.debug("Skipping frame before extension handshake (%d bytes)", len(payload))

        msg = "No extension handshake received"
        raise ExtensionError(msg, {"skipped": MAX_SKIPPED_FRAMES + 1})

    def negotiate(self) -> tuple[bytes, ExtensionParameters]:
        """Run both handshakes; return remote peer id and extension parameters."""
        remote_peer_id = self.perform_handshake()
        return remote_peer_id, self.perform_extension_handshake()
