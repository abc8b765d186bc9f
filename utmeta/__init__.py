"""utmeta - fetch torrent metadata from a single peer (BEP 9 / BEP 10)."""

from __future__ import annotations

__version__ = "0.1.0"

from utmeta.core.identifiers import PeerEndpoint, generate_peer_id, parse_info_hash
from utmeta.protocol.handshake import ExtensionParameters
from utmeta.session.session import MetadataSession, fetch_metadata
from utmeta.utils.exceptions import (
    ChecksumError,
    ExtensionError,
    PeerConnectionError,
    PieceError,
    ProtocolError,
    UTMetaError,
)

__all__ = [
    "ChecksumError",
    "ExtensionError",
    "ExtensionParameters",
    "MetadataSession",
    "PeerConnectionError",
    "PeerEndpoint",
    "PieceError",
    "ProtocolError",
    "UTMetaError",
    "__version__",
    "fetch_metadata",
    "generate_peer_id",
    "parse_info_hash",
]
