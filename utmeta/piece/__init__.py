"""Metadata piece assembly."""

from __future__ import annotations

from utmeta.piece.assembler import MetadataAssembly, PieceAssembler

__all__ = ["MetadataAssembly", "PieceAssembler"]
