"""Framed peer transport."""

from __future__ import annotations

from utmeta.transport.frame import FrameTransport

__all__ = ["FrameTransport"]
