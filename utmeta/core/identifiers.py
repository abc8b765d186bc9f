"""Peer endpoint, info hash and peer id helpers."""

from __future__ import annotations

import base64
import binascii
import secrets
import urllib.parse
from dataclasses import dataclass

from utmeta.utils.exceptions import ValidationError

INFO_HASH_LENGTH = 20
PEER_ID_LENGTH = 20
DEFAULT_PEER_ID_PREFIX = "-UM0100-"

_PEER_ID_ALPHABET = b"0123456789abcdefghijklmnopqrstuvwxyz"


@dataclass(frozen=True)
class PeerEndpoint:
    """Remote peer address plus the local peer id presented to it."""

    host: str
    port: int
    peer_id: bytes

    def __post_init__(self) -> None:
        """Validate endpoint fields."""
        if not self.host:
            msg = "Peer host must not be empty"
            raise ValidationError(msg)
        if not 0 < self.port < 65536:
            msg = f"Peer port out of range: {self.port}"
            raise ValidationError(msg)
        if len(self.peer_id) != PEER_ID_LENGTH:
            msg = f"Peer ID must be {PEER_ID_LENGTH} bytes, got {len(self.peer_id)}"
            raise ValidationError(msg)

    @property
    def address(self) -> tuple[str, int]:
        """Address tuple suitable for ``socket.create_connection``."""
        return (self.host, self.port)

    def __str__(self) -> str:
        """Return ``host:port`` (brackets for IPv6)."""
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"

    @classmethod
    def parse(cls, address: str, peer_id: bytes | None = None) -> PeerEndpoint:
        """Parse ``host:port`` or ``[v6addr]:port``.

        Args:
            address: Peer address string
            peer_id: Local peer id; a random one is generated when omitted

        Raises:
            ValidationError: If the address cannot be parsed

        """
        address = address.strip()
        if address.startswith("["):
            host, sep, rest = address[1:].partition("]")
            if not sep or not rest.startswith(":"):
                msg = f"Invalid peer address: {address!r}"
                raise ValidationError(msg)
            port_str = rest[1:]
        else:
            host, sep, port_str = address.rpartition(":")
            if not sep or ":" in host:
                msg = f"Invalid peer address: {address!r}"
                raise ValidationError(msg)

        try:
            port = int(port_str)
        except ValueError as e:
            msg = f"Invalid peer port in {address!r}"
            raise ValidationError(msg) from e

        return cls(host, port, peer_id if peer_id is not None else generate_peer_id())


def generate_peer_id(prefix: str = DEFAULT_PEER_ID_PREFIX) -> bytes:
    """Generate an Azureus-style 20-byte peer id with the given client prefix."""
    raw_prefix = prefix.encode("ascii")
    if len(raw_prefix) > PEER_ID_LENGTH:
        msg = f"Peer ID prefix longer than {PEER_ID_LENGTH} bytes: {prefix!r}"
        raise ValidationError(msg)
    suffix = bytes(
        secrets.choice(_PEER_ID_ALPHABET)
        for _ in range(PEER_ID_LENGTH - len(raw_prefix))
    )
    return raw_prefix + suffix


def _hex_or_base32_to_bytes(btih: str) -> bytes:
    """Decode btih which can be hex (40 chars) or base32 (32 chars)."""
    btih = btih.strip()
    try:
        if len(btih) == 40:
            return bytes.fromhex(btih)
        if len(btih) == 32:
            return base64.b32decode(btih.upper())
    except (ValueError, binascii.Error) as e:
        msg = f"Invalid info hash encoding: {btih!r}"
        raise ValidationError(msg) from e

    msg = f"Info hash must be 40 hex or 32 base32 characters, got {len(btih)}"
    raise ValidationError(msg)


def parse_info_hash(value: str) -> bytes:
    """Parse an info hash from hex, base32 or a magnet URI.

    Only the ``xt=urn:btih:`` parameter of a magnet link is read; trackers
    and other parameters are ignored.
    """
    value = value.strip()
    if value.startswith("magnet:"):
        query = urllib.parse.urlparse(value).query
        for xt in urllib.parse.parse_qs(query).get("xt", []):
            if xt.startswith("urn:btih:"):
                return _hex_or_base32_to_bytes(xt[len("urn:btih:") :])
        msg = "Magnet link has no urn:btih parameter"
        raise ValidationError(msg)
    return _hex_or_base32_to_bytes(value)
