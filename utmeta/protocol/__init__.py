"""Peer wire handshakes."""

from __future__ import annotations

from utmeta.protocol.handshake import (
    ExtensionParameters,
    Handshake,
    HandshakeNegotiator,
)

__all__ = ["ExtensionParameters", "Handshake", "HandshakeNegotiator"]
