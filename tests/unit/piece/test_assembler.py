"""Tests for metadata piece requesting and reassembly."""

from __future__ import annotations

import hashlib
from unittest.mock import Mock, call

import pytest

from tests.conftest import piece_message, split_pieces
from utmeta.core.bencode import encode
from utmeta.piece.assembler import (
    MetadataAssembly,
    PieceAssembler,
    expected_piece_length,
    piece_count,
)
from utmeta.protocol.handshake import ExtensionParameters
from utmeta.transport.frame import FrameTransport
from utmeta.utils.exceptions import ChecksumError, PieceError

pytestmark = [pytest.mark.unit, pytest.mark.metadata]

# 2 full pieces and a 100-byte tail
METADATA = bytes(i % 251 for i in range(32868))
INFO_HASH = hashlib.sha1(METADATA).digest()


def _assembler(frames, metadata_size=len(METADATA), info_hash=INFO_HASH, peer_id=3):
    transport = Mock(spec=FrameTransport)
    transport.read_frame.side_effect = list(frames)
    params = ExtensionParameters(metadata_size=metadata_size, peer_metadata_id=peer_id)
    return PieceAssembler(transport, params, info_hash), transport


class TestPieceArithmetic:
    """Tests for piece count and piece lengths."""

    @pytest.mark.parametrize(
        ("size", "count"),
        [(0, 0), (1, 1), (16384, 1), (16385, 2), (32868, 3), (16384 * 1024, 1024)],
    )
    def test_piece_count(self, size, count):
        """Test piece count boundaries."""
        assert piece_count(size) == count

    def test_expected_piece_lengths(self):
        """Test that only the last piece is short."""
        assert [expected_piece_length(i, 32868) for i in range(3)] == [
            16384,
            16384,
            100,
        ]

    def test_expected_piece_length_out_of_range(self):
        """Test that an index past the last piece raises PieceError."""
        with pytest.raises(PieceError):
            expected_piece_length(3, 32868)


class TestMetadataAssembly:
    """Tests for MetadataAssembly slots."""

    def test_zero_size_is_complete(self):
        """Test that an empty assembly is complete and yields empty bytes."""
        assembly = MetadataAssembly(0)

        assert len(assembly) == 0
        assert assembly.is_complete
        assert assembly.assemble() == b""

    def test_missing_pieces(self):
        """Test tracking missing pieces."""
        assembly = MetadataAssembly(32868)
        assembly.store(1, b"b")

        assert assembly.missing == [0, 2]
        assert not assembly.is_complete
        with pytest.raises(PieceError, match="incomplete"):
            assembly.assemble()

    def test_store_out_of_range(self):
        """Test that storing past the last slot raises PieceError."""
        assembly = MetadataAssembly(100)
        with pytest.raises(PieceError):
            assembly.store(1, b"x")
        with pytest.raises(PieceError):
            assembly.store(-1, b"x")


class TestPieceAssembler:
    """Tests for PieceAssembler."""

    def test_request_all_is_eager(self):
        """Test that every piece is requested before any reply is read."""
        assembler, transport = _assembler([])

        assembler.request_all()

        assert transport.write_frame.call_args_list == [
            call(b"\x14\x03" + encode({"msg_type": 0, "piece": i})) for i in range(3)
        ]
        transport.read_frame.assert_not_called()

    def test_request_all_zero_pieces(self):
        """Test that zero-size metadata sends no requests."""
        assembler, transport = _assembler([], metadata_size=0)
        assembler.request_all()
        transport.write_frame.assert_not_called()

    def test_collect_in_order(self):
        """Test collecting three pieces of a 32868-byte dictionary."""
        pieces = split_pieces(METADATA)
        assembler, _ = _assembler(piece_message(i, p) for i, p in enumerate(pieces))

        assert assembler.collect() == METADATA

    def test_collect_out_of_order(self):
        """Test that replies in reverse order produce the same bytes."""
        pieces = split_pieces(METADATA)
        assembler, _ = _assembler(
            piece_message(i, pieces[i], total_size=len(METADATA)) for i in (2, 0, 1)
        )

        assert assembler.collect() == METADATA

    def test_duplicate_piece_last_wins(self):
        """Test that a re-delivered piece overwrites the earlier copy."""
        pieces = split_pieces(METADATA)
        frames = [
            piece_message(0, b"\x00" * 16384),
            piece_message(1, pieces[1]),
            piece_message(0, pieces[0]),
            piece_message(2, pieces[2]),
        ]
        assembler, _ = _assembler(frames)

        assert assembler.collect() == METADATA

    def test_unrelated_frames_ignored(self):
        """Test that keep-alives and other messages are skipped."""
        pieces = split_pieces(METADATA)
        frames = [
            b"",
            b"\x05\xff",
            b"\x14\x00" + encode({"m": {}}),
            b"\x14\x03" + encode({"msg_type": 1, "piece": 0}),
        ] + [piece_message(i, p) for i, p in enumerate(pieces)]
        assembler, _ = _assembler(frames)

        assert assembler.handle_frame(b"") is False
        assert assembler.collect() == METADATA

    def test_replies_only_accepted_with_local_id(self):
        """Test that a reply labelled with the peer's own id is ignored."""
        assembler, _ = _assembler([])
        assert assembler.handle_frame(piece_message(0, b"x", sub_id=3)) is False
        assert assembler.assembly.missing == [0, 1, 2]

    def test_payload_containing_ee(self):
        """Test that piece bytes starting with 'ee' are kept intact."""
        data = b"eeee" + b"\x00" * 96
        assembler, _ = _assembler(
            [piece_message(0, data)],
            metadata_size=len(data),
            info_hash=hashlib.sha1(data).digest(),
        )

        assert assembler.collect() == data

    def test_reject_raises(self):
        """Test that a reject message raises PieceError."""
        assembler, _ = _assembler([piece_message(1, msg_type=2)])

        with pytest.raises(PieceError, match="rejected") as exc_info:
            assembler.collect()
        assert exc_info.value.details == {"piece": 1}

    def test_request_message_type_raises(self):
        """Test that a request from the peer is treated as a bad reply."""
        assembler, _ = _assembler([piece_message(0, msg_type=0)])
        with pytest.raises(PieceError, match="type"):
            assembler.collect()

    @pytest.mark.parametrize("index", [3, -1])
    def test_index_out_of_range(self, index):
        """Test that indexes outside the piece range raise PieceError."""
        assembler, _ = _assembler([piece_message(index, b"x")])
        with pytest.raises(PieceError, match="out of range"):
            assembler.collect()

    def test_malformed_header(self):
        """Test that an undecodable header raises PieceError."""
        assembler, _ = _assembler([b"\x14\x01d8:msg_type"])
        with pytest.raises(PieceError, match="Malformed"):
            assembler.collect()

    def test_oversized_index_integer(self):
        """Test that a piece index with thousands of digits raises PieceError."""
        assembler, _ = _assembler([])
        with pytest.raises(PieceError, match="Malformed"):
            assembler.handle_frame(b"\x14\x01d8:msg_typei1e5:piecei" + b"1" * 5000 + b"ee")

    @pytest.mark.parametrize(("index", "length"), [(0, 16385), (2, 101), (2, 16384)])
    def test_piece_longer_than_slot(self, index, length):
        """Test that a piece longer than its expected length raises PieceError."""
        assembler, _ = _assembler([])
        with pytest.raises(PieceError, match="longer than expected") as exc_info:
            assembler.handle_frame(piece_message(index, b"\x00" * length))
        assert exc_info.value.details["length"] == length
        assert assembler.assembly.missing == [0, 1, 2]

    def test_short_piece_stored(self):
        """Test that a short piece is stored and left to the checksum."""
        assembler, _ = _assembler([])
        assert assembler.handle_frame(piece_message(2, b"\x00" * 99)) is True
        assert assembler.assembly.missing == [0, 1]

    def test_non_dict_header(self):
        """Test that a header that is not a dictionary raises PieceError."""
        assembler, _ = _assembler([b"\x14\x01i1e"])
        with pytest.raises(PieceError, match="not a dictionary"):
            assembler.collect()

    def test_checksum_mismatch(self):
        """Test that a corrupted piece fails SHA-1 verification."""
        pieces = split_pieces(METADATA)
        corrupted = bytearray(pieces[1])
        corrupted[0] ^= 0xFF
        frames = [
            piece_message(0, pieces[0]),
            piece_message(1, bytes(corrupted)),
            piece_message(2, pieces[2]),
        ]
        assembler, _ = _assembler(frames)

        with pytest.raises(ChecksumError) as exc_info:
            assembler.collect()
        assert exc_info.value.details["expected"] == INFO_HASH.hex()

    def test_zero_size_verifies_against_empty_hash(self):
        """Test that zero-size metadata completes without reading frames."""
        assembler, transport = _assembler(
            [], metadata_size=0, info_hash=hashlib.sha1(b"").digest()
        )

        assert assembler.collect() == b""
        transport.read_frame.assert_not_called()
