"""Metadata session lifecycle."""

from __future__ import annotations

from utmeta.session.session import MetadataSession, fetch_metadata

__all__ = ["MetadataSession", "fetch_metadata"]
