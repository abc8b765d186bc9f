"""Single-peer metadata session.

A :class:`MetadataSession` owns exactly one connection attempt: it dials
the peer, runs both handshakes, requests every metadata piece and returns
the verified raw ``info`` dictionary bytes. Any failure closes the
connection and propagates; there is no retry and no resumption.
"""

from __future__ import annotations

import socket
from types import TracebackType

from utmeta.config.config import get_config
from utmeta.core.identifiers import PeerEndpoint, generate_peer_id
from utmeta.models import Config, SessionState
from utmeta.piece.assembler import PieceAssembler
from utmeta.protocol.handshake import ExtensionParameters, HandshakeNegotiator
from utmeta.transport.frame import FrameTransport
from utmeta.utils.exceptions import (
    PeerConnectionError,
    PeerTimeoutError,
    SessionStateError,
    ValidationError,
)
from utmeta.utils.logging_config import LoggingContext, get_logger

logger = get_logger(__name__)


class MetadataSession:
    """Fetches torrent metadata from one peer over one connection."""

    def __init__(
        self,
        endpoint: PeerEndpoint,
        info_hash: bytes,
        config: Config | None = None,
    ) -> None:
        """Initialize session.

        Args:
            endpoint: Peer address and local peer id
            info_hash: 20-byte info hash of the wanted torrent
            config: Configuration; the global one when omitted

        """
        if len(info_hash) != 20:
            msg = f"Info hash must be 20 bytes, got {len(info_hash)}"
            raise ValidationError(msg)

        self.endpoint = endpoint
        self.info_hash = info_hash
        self.config = config or get_config()

        self._state = SessionState.IDLE
        self._transport: FrameTransport | None = None
        self._extension_parameters: ExtensionParameters | None = None
        self._remote_peer_id: bytes | None = None
        self._error: Exception | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def extension_parameters(self) -> ExtensionParameters | None:
        """Peer's ut_metadata parameters, once the extension handshake is done."""
        return self._extension_parameters

    @property
    def remote_peer_id(self) -> bytes | None:
        return self._remote_peer_id

    @property
    def error(self) -> Exception | None:
        """The exception that moved the session to FAILED."""
        return self._error

    def _transition(self, new_state: SessionState) -> None:
        logger.debug(
            "Session %s state transition: %s -> %s",
            self.endpoint,
            self._state.value,
            new_state.value,
        )
        self._state = new_state

    def fetch(self) -> bytes:
        """Run the whole exchange and return the verified metadata bytes.

        Raises:
            SessionStateError: If the session was already used
            UTMetaError: Any connection, protocol, extension, piece or
                checksum failure, unmodified

        """
        if self._state is not SessionState.IDLE:
            msg = f"Session already used (state {self._state.value})"
            raise SessionStateError(msg)

        try:
            with LoggingContext(
                "metadata_fetch",
                logger=logger,
                peer=str(self.endpoint),
                info_hash=self.info_hash.hex(),
            ):
                metadata = self._run()
        except Exception as e:
            self._error = e
            self._transition(SessionState.FAILED)
            self.close()
            raise

        self._transition(SessionState.DONE)
        self.close()
        logger.info(
            "Fetched %d bytes of metadata for %s from %s",
            len(metadata),
            self.info_hash.hex(),
            self.endpoint,
        )
        return metadata

    def _run(self) -> bytes:
        network = self.config.network

        self._transition(SessionState.CONNECTING)
        self._transport = FrameTransport(
            self._connect(network.dial_timeout),
            max_frame_size=network.max_frame_size,
        )

        negotiator = HandshakeNegotiator(
            self._transport,
            self.info_hash,
            self.endpoint.peer_id,
            timeout=network.handshake_timeout,
        )
        self._transition(SessionState.HANDSHAKING)
        self._remote_peer_id = negotiator.perform_handshake()

        self._transition(SessionState.EXTENSION_HANDSHAKING)
        self._extension_parameters = negotiator.perform_extension_handshake()

        assembler = PieceAssembler(
            self._transport,
            self._extension_parameters,
            self.info_hash,
        )
        # One deadline covers requesting and collecting all pieces.
        self._transport.set_deadline(network.metadata_timeout)
        self._transition(SessionState.REQUESTING_PIECES)
        assembler.request_all()

        self._transition(SessionState.ASSEMBLING)
        return assembler.collect()

    def _connect(self, timeout: float) -> socket.socket:
        try:
            return socket.create_connection(self.endpoint.address, timeout=timeout)
        except socket.timeout as e:
            msg = f"Connecting to {self.endpoint} timed out"
            raise PeerTimeoutError(msg) from e
        except OSError as e:
            msg = f"Failed to connect to {self.endpoint}: {e}"
            raise PeerConnectionError(msg) from e

    def close(self) -> None:
        """Close the connection if open."""
        if self._transport is not None:
            self._transport.close()

    def __enter__(self) -> MetadataSession:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


def fetch_metadata(
    address: str,
    info_hash: bytes,
    peer_id: bytes | None = None,
    config: Config | None = None,
) -> bytes:
    """Fetch verified metadata bytes from the peer at ``address`` once.

    Args:
        address: ``host:port`` of the peer
        info_hash: 20-byte info hash
        peer_id: Local peer id; generated from the configured prefix if omitted
        config: Configuration; the global one when omitted

    """
    config = config or get_config()
    if peer_id is None:
        peer_id = generate_peer_id(config.network.peer_id_prefix)
    endpoint = PeerEndpoint.parse(address, peer_id=peer_id)
    with MetadataSession(endpoint, info_hash, config=config) as session:
        return session.fetch()
