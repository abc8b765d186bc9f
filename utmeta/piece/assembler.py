"""ut_metadata piece requesting, reassembly and verification (BEP 9)."""

from __future__ import annotations

import hashlib
import logging
import math

from utmeta.core.bencode import BencodeDecoder
from utmeta.protocol.handshake import (
    EXTENDED_MESSAGE_ID,
    LOCAL_METADATA_ID,
    METADATA_PIECE_SIZE,
    ExtensionParameters,
    encode_extended,
)
from utmeta.transport.frame import FrameTransport
from utmeta.utils.exceptions import BencodeDecodeError, ChecksumError, PieceError

logger = logging.getLogger(__name__)

MSG_TYPE_REQUEST = 0
MSG_TYPE_DATA = 1
MSG_TYPE_REJECT = 2


def piece_count(metadata_size: int) -> int:
    """Number of metadata pieces for ``metadata_size`` bytes."""
    return math.ceil(metadata_size / METADATA_PIECE_SIZE)


def expected_piece_length(index: int, metadata_size: int) -> int:
    """Length of piece ``index``; only the last piece may be short."""
    count = piece_count(metadata_size)
    if not 0 <= index < count:
        msg = f"Piece index {index} out of range [0, {count})"
        raise PieceError(msg)
    if index < count - 1:
        return METADATA_PIECE_SIZE
    return metadata_size - METADATA_PIECE_SIZE * (count - 1)


class MetadataAssembly:
    """Piece slots for one metadata download."""

    def __init__(self, metadata_size: int) -> None:
        self.metadata_size = metadata_size
        self._pieces: list[bytes | None] = [None] * piece_count(metadata_size)

    def __len__(self) -> int:
        return len(self._pieces)

    def store(self, index: int, data: bytes) -> None:
        """Store piece ``index``; a later delivery overwrites an earlier one."""
        if not 0 <= index < len(self._pieces):
            msg = f"Piece index {index} out of range [0, {len(self._pieces)})"
            raise PieceError(msg)
        self._pieces[index] = data

    @property
    def is_complete(self) -> bool:
        return all(piece is not None for piece in self._pieces)

    @property
    def missing(self) -> list[int]:
        return [i for i, piece in enumerate(self._pieces) if piece is None]

    def assemble(self) -> bytes:
        """Concatenate all pieces in index order."""
        if not self.is_complete:
            msg = "Metadata incomplete"
            raise PieceError(msg, {"missing": self.missing})
        return b"".join(self._pieces)  # type: ignore[arg-type]


class PieceAssembler:
    """Requests every metadata piece and collects the replies."""

    def __init__(
        self,
        transport: FrameTransport,
        params: ExtensionParameters,
        info_hash: bytes,
        local_metadata_id: int = LOCAL_METADATA_ID,
    ) -> None:
        """Initialize assembler.

        Args:
            transport: Framed connection past both handshakes
            params: Parameters from the peer's extension handshake
            info_hash: Expected SHA-1 of the reassembled metadata
            local_metadata_id: Sub-id the peer uses for its replies

        """
        self.transport = transport
        self.params = params
        self.info_hash = info_hash
        self.local_metadata_id = local_metadata_id
        self.assembly = MetadataAssembly(params.metadata_size)

    def request_all(self) -> None:
        """Send a request for every piece without waiting for replies."""
        for index in range(len(self.assembly)):
            self.transport.write_frame(
                encode_extended(
                    self.params.peer_metadata_id,
                    {"msg_type": MSG_TYPE_REQUEST, "piece": index},
                )
            )
        logger.debug("Sent %d metadata piece request(s)", len(self.assembly))

    def handle_frame(self, payload: bytes) -> bool:
        """Store the piece carried by ``payload``.

        Returns:
            False if the frame is not a ut_metadata reply and was ignored

        Raises:
            PieceError: Undecodable header, reject, bad type, bad index or
                a piece longer than its slot

        """
        if (
            len(payload) < 2
            or payload[0] != EXTENDED_MESSAGE_ID
            or payload[1] != self.local_metadata_id
        ):
            return False

        body = payload[2:]
        decoder = BencodeDecoder(body)
        try:
            header = decoder.decode()
        except BencodeDecodeError as e:
            msg = f"Malformed piece header: {e.message}"
            raise PieceError(msg) from e
        if not isinstance(header, dict):
            msg = "Piece header is not a dictionary"
            raise PieceError(msg)

        msg_type = header.get(b"msg_type")
        index = header.get(b"piece")
        if msg_type == MSG_TYPE_REJECT:
            msg = "Peer rejected metadata request"
            raise PieceError(msg, {"piece": index})
        if msg_type != MSG_TYPE_DATA:
            msg = "Unexpected metadata message type"
            raise PieceError(msg, {"msg_type": msg_type})
        if not isinstance(index, int) or not 0 <= index < len(self.assembly):
            msg = "Piece index out of range"
            raise PieceError(msg, {"piece": index, "piece_count": len(self.assembly)})

        # Piece bytes start where the header dictionary ends.
        data = body[decoder.pos :]
        expected = expected_piece_length(index, self.params.metadata_size)
        if len(data) > expected:
            msg = "Piece longer than expected"
            raise PieceError(msg, {"piece": index, "length": len(data), "expected": expected})

        self.assembly.store(index, data)
        logger.debug("Received metadata piece %d (%d bytes)", index, len(data))
        return True

    def collect(self) -> bytes:
        """Read replies until every piece arrived, then verify."""
        while not self.assembly.is_complete:
            self.handle_frame(self.transport.read_frame())
        return self.verify()

    def verify(self) -> bytes:
        """Return the metadata if its SHA-1 matches the info hash."""
        metadata = self.assembly.assemble()
        digest = hashlib.sha1(metadata).digest()  # nosec B324 - SHA-1 required by BitTorrent protocol (BEP 3)
        if digest != self.info_hash:
            msg = "Metadata checksum mismatch"
            raise ChecksumError(
                msg, {"expected": self.info_hash.hex(), "got": digest.hex()}
            )
        return metadata
