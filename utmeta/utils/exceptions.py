"""Exception hierarchy for utmeta.

Every failure raised by a metadata session is a subclass of
:class:`UTMetaError`, so callers can catch one type and still
dispatch on the concrete cause.
"""

from __future__ import annotations

from typing import Any


class UTMetaError(Exception):
    """Base exception for all utmeta errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize utmeta error."""
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class NetworkError(UTMetaError):
    """Network-related errors."""


class PeerConnectionError(NetworkError):
    """Dial, read or write failure on the peer connection."""


class PeerTimeoutError(PeerConnectionError):
    """A phase deadline expired."""


class FrameSizeError(PeerConnectionError):
    """Peer declared a frame larger than the configured ceiling."""


class ProtocolError(UTMetaError):
    """Base handshake errors."""


class ProtocolMismatchError(ProtocolError):
    """Peer did not answer with the BitTorrent protocol string."""


class ExtensionUnsupportedError(ProtocolError):
    """Peer did not set the extension protocol bit."""


class InfoHashMismatchError(ProtocolError):
    """Peer echoed a different info hash."""


class ExtensionError(UTMetaError):
    """Malformed, missing or out-of-range extension handshake fields."""


class MetadataSizeMissingError(ExtensionError):
    """Extension handshake carries no integer metadata_size."""


class MetadataSizeNegativeError(ExtensionError):
    """Announced metadata_size is negative."""


class MetadataSizeTooLargeError(ExtensionError):
    """Announced metadata_size exceeds the maximum."""


class MissingHandshakeMapError(ExtensionError):
    """Extension handshake has no 'm' dictionary."""


class MissingUtMetadataError(ExtensionError):
    """Extension handshake 'm' dictionary has no ut_metadata id."""


class PieceError(UTMetaError):
    """Bad metadata piece reply."""


class ChecksumError(UTMetaError):
    """Reassembled metadata does not hash to the info hash."""


class SessionStateError(UTMetaError):
    """Operation not allowed in the current session state."""


class ValidationError(UTMetaError):
    """Data validation errors."""


class ConfigurationError(ValidationError):
    """Configuration validation errors."""


class BencodeError(ValidationError):
    """Bencode encoding/decoding errors."""


class BencodeDecodeError(BencodeError):
    """Input is not valid bencode."""


class BencodeEncodeError(BencodeError):
    """Value cannot be represented in bencode."""
