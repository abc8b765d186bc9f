"""Bencode encoding and decoding (BEP 3).

The decoder keeps its read position in ``pos`` after a successful
``decode()``. ut_metadata piece replies carry a bencoded header followed
directly by raw piece bytes, so callers use ``pos`` to find where the
payload starts.
"""

from __future__ import annotations

from typing import Any

from utmeta.utils.exceptions import BencodeDecodeError, BencodeEncodeError

MAX_NESTING_DEPTH = 256


class BencodeDecoder:
    """Decode a single bencoded value from a byte buffer."""

    def __init__(self, data: bytes):
        """Initialize decoder over ``data``."""
        self.data = bytes(data)
        self.pos = 0

    def decode(self) -> Any:
        """Decode one value starting at the current position."""
        return self._decode_value(0)

    def _decode_value(self, depth: int) -> Any:
        if depth > MAX_NESTING_DEPTH:
            msg = "Bencode nesting too deep"
            raise BencodeDecodeError(msg, {"pos": self.pos})
        if self.pos >= len(self.data):
            msg = "Unexpected end of data"
            raise BencodeDecodeError(msg, {"pos": self.pos})

        token = self.data[self.pos : self.pos + 1]
        if token == b"i":
            return self._decode_int()
        if token == b"l":
            return self._decode_list(depth)
        if token == b"d":
            return self._decode_dict(depth)
        if token.isdigit():
            return self._decode_string()

        msg = f"Invalid token {token!r}"
        raise BencodeDecodeError(msg, {"pos": self.pos})

    def _decode_int(self) -> int:
        end = self.data.find(b"e", self.pos)
        if end == -1:
            msg = "Unterminated integer"
            raise BencodeDecodeError(msg, {"pos": self.pos})

        raw = self.data[self.pos + 1 : end]
        digits = raw[1:] if raw.startswith(b"-") else raw
        if not digits or not digits.isdigit():
            msg = f"Invalid integer {raw!r}"
            raise BencodeDecodeError(msg, {"pos": self.pos})
        if (digits.startswith(b"0") and len(digits) > 1) or raw == b"-0":
            msg = f"Non-canonical integer {raw!r}"
            raise BencodeDecodeError(msg, {"pos": self.pos})

        try:
            value = int(raw)
        except ValueError as e:
            msg = f"Integer too long ({len(digits)} digits)"
            raise BencodeDecodeError(msg, {"pos": self.pos}) from e
        self.pos = end + 1
        return value

    def _decode_string(self) -> bytes:
        colon = self.data.find(b":", self.pos)
        if colon == -1:
            msg = "Missing string length separator"
            raise BencodeDecodeError(msg, {"pos": self.pos})

        raw_len = self.data[self.pos : colon]
        if not raw_len.isdigit() or (raw_len.startswith(b"0") and len(raw_len) > 1):
            msg = f"Invalid string length {raw_len!r}"
            raise BencodeDecodeError(msg, {"pos": self.pos})

        try:
            length = int(raw_len)
        except ValueError as e:
            msg = f"String length too long ({len(raw_len)} digits)"
            raise BencodeDecodeError(msg, {"pos": self.pos}) from e
        start = colon + 1
        end = start + length
        if end > len(self.data):
            msg = f"String length {length} exceeds available data"
            raise BencodeDecodeError(msg, {"pos": self.pos})

        self.pos = end
        return self.data[start:end]

    def _decode_list(self, depth: int) -> list[Any]:
        self.pos += 1
        items: list[Any] = []
        while True:
            if self.pos >= len(self.data):
                msg = "Unterminated list"
                raise BencodeDecodeError(msg, {"pos": self.pos})
            if self.data[self.pos : self.pos + 1] == b"e":
                self.pos += 1
                return items
            items.append(self._decode_value(depth + 1))

    def _decode_dict(self, depth: int) -> dict[bytes, Any]:
        self.pos += 1
        result: dict[bytes, Any] = {}
        while True:
            if self.pos >= len(self.data):
                msg = "Unterminated dictionary"
                raise BencodeDecodeError(msg, {"pos": self.pos})
            if self.data[self.pos : self.pos + 1] == b"e":
                self.pos += 1
                return result
            if not self.data[self.pos : self.pos + 1].isdigit():
                msg = "Dictionary key must be a string"
                raise BencodeDecodeError(msg, {"pos": self.pos})
            key = self._decode_string()
            result[key] = self._decode_value(depth + 1)


class BencodeEncoder:
    """Encode Python values to bencode."""

    def encode(self, obj: Any) -> bytes:
        """Encode ``obj`` to bytes."""
        out = bytearray()
        self._encode_value(obj, out)
        return bytes(out)

    def _encode_value(self, obj: Any, out: bytearray) -> None:
        # bool is an int subclass but has no bencode form
        if isinstance(obj, bool):
            msg = "Cannot encode bool"
            raise BencodeEncodeError(msg)
        if isinstance(obj, int):
            out += b"i%de" % obj
        elif isinstance(obj, (bytes, bytearray, memoryview)):
            raw = bytes(obj)
            out += b"%d:" % len(raw)
            out += raw
        elif isinstance(obj, str):
            self._encode_value(obj.encode("utf-8"), out)
        elif isinstance(obj, (list, tuple)):
            out += b"l"
            for item in obj:
                self._encode_value(item, out)
            out += b"e"
        elif isinstance(obj, dict):
            self._encode_dict(obj, out)
        else:
            msg = f"Cannot encode type {type(obj).__name__}"
            raise BencodeEncodeError(msg)

    def _encode_dict(self, obj: dict[Any, Any], out: bytearray) -> None:
        items: list[tuple[bytes, Any]] = []
        for key, value in obj.items():
            if isinstance(key, str):
                key = key.encode("utf-8")
            elif not isinstance(key, bytes):
                msg = f"Dictionary key must be bytes or str, got {type(key).__name__}"
                raise BencodeEncodeError(msg)
            items.append((key, value))

        out += b"d"
        for key, value in sorted(items, key=lambda item: item[0]):
            self._encode_value(key, out)
            self._encode_value(value, out)
        out += b"e"


def decode(data: bytes) -> Any:
    """Decode a complete bencoded buffer; trailing bytes are an error."""
    decoder = BencodeDecoder(data)
    value = decoder.decode()
    if decoder.pos != len(decoder.data):
        msg = "Trailing data after bencoded value"
        raise BencodeDecodeError(msg, {"pos": decoder.pos})
    return value


def encode(obj: Any) -> bytes:
    """Encode ``obj`` to bencode."""
    return BencodeEncoder().encode(obj)
