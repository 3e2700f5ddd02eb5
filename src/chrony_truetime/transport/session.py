"""
Transport Session - one UDP socket talking to chronyd's C&M port.

A Session sends tracking requests and waits for the matching reply.
A reply is accepted only if it comes from the configured peer address
and echoes the sequence number of the request just sent; anything else
on the socket is discarded and the wait continues within the same
deadline.

Sessions are not safe for concurrent queries from several threads.
Give each caller its own Session.

Usage:
    with Session.open() as session:
        session.wait_for_sync()
        tracking = session.query()
"""

import logging
import random
import socket
import time
from typing import Dict, Optional, Tuple

from ..errors import (
    ConnectError,
    DaemonReplyError,
    EmptyReadError,
    ShortReadError,
    SyncNotAchievedError,
    TransportError,
    TransportTimeoutError,
)
from ..interfaces.tracking import AddressFamily, TrackingResponse
from ..protocol.candm import (
    DEFAULT_CANDM_HOST,
    DEFAULT_CANDM_PORT,
    HEADER_SIZE,
    PKT_TYPE_CMD_REPLY,
    REFID_LOCAL,
    RESPONSE_SIZE,
    RPY_TRACKING,
    STT_SUCCESS,
    ReplyHeader,
    decode_header,
    decode_response,
    encode_request,
    status_name,
)
from ..timing.uncertainty import epsilon_ns

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 1.0
RECV_BUFFER_SIZE = 1024

DEFAULT_SYNC_ATTEMPTS = 3
DEFAULT_MAX_SYNC_UNCERTAINTY_NS = 20_000_000  # 20 ms
DEFAULT_SYNC_RETRY_INTERVAL = 0.5


class Session:
    """
    UDP request/response session with a local chronyd.

    Owns its socket and its randomness source. The randomness source
    generates sequence numbers, so it must be unpredictable to off-path
    senders; tests may pass a seeded random.Random instead.
    """

    def __init__(
        self,
        host: str = DEFAULT_CANDM_HOST,
        port: int = DEFAULT_CANDM_PORT,
        timeout: float = DEFAULT_TIMEOUT,
        rng: Optional[random.Random] = None,
    ):
        """
        Args:
            host: Daemon address (default: loopback)
            port: Daemon C&M port (default: 323)
            timeout: Seconds to wait for a matching reply per query
            rng: Sequence-number source (default: random.SystemRandom())
        """
        self.host = host
        self.port = port
        self.timeout = timeout
        self.rng = rng if rng is not None else random.SystemRandom()
        self.peer: Optional[Tuple] = None
        self.sock: Optional[socket.socket] = None
        self.stats: Dict[str, int] = {
            'queries': 0,
            'discarded_sender': 0,
            'discarded_sequence': 0,
        }

    @classmethod
    def open(cls, host: str = DEFAULT_CANDM_HOST, port: int = DEFAULT_CANDM_PORT, **kwargs) -> "Session":
        """Create a session and open its socket. Raises ConnectError."""
        session = cls(host, port, **kwargs)
        session.connect()
        return session

    def connect(self):
        """
        Resolve the daemon address and bind a UDP socket.

        The socket is left unconnected so replies from other senders
        reach us and can be recognised and dropped explicitly.

        Raises:
            ConnectError: on resolution or socket failure
        """
        if self.sock is not None:
            return

        try:
            infos = socket.getaddrinfo(self.host, self.port, 0, socket.SOCK_DGRAM)
        except (socket.gaierror, UnicodeError) as e:
            raise ConnectError(f"cannot resolve {self.host}:{self.port}: {e}") from e
        if not infos:
            raise ConnectError(f"no address for {self.host}:{self.port}")

        family, socktype, proto, _, sockaddr = infos[0]
        try:
            sock = socket.socket(family, socktype, proto)
        except OSError as e:
            raise ConnectError(f"cannot create socket: {e}") from e

        try:
            bind_host = '::' if family == socket.AF_INET6 else '0.0.0.0'
            sock.bind((bind_host, 0))
        except OSError as e:
            sock.close()
            raise ConnectError(f"cannot bind socket: {e}") from e

        self.sock = sock
        self.peer = sockaddr
        logger.info(f"Session opened: peer={sockaddr[0]}:{sockaddr[1]}")

    @property
    def closed(self) -> bool:
        return self.sock is None

    def close(self):
        """Release the socket. Safe to call more than once."""
        if self.sock is None:
            return
        try:
            self.sock.close()
        finally:
            self.sock = None
            logger.info("Session closed")

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _same_peer(self, addr: Tuple) -> bool:
        # IPv6 tuples also carry flowinfo and scope id; compare scope, not flowinfo
        if addr[0] != self.peer[0] or addr[1] != self.peer[1]:
            return False
        if len(addr) >= 4 and len(self.peer) >= 4:
            return addr[3] == self.peer[3]
        return True

    def query(self) -> TrackingResponse:
        """
        Send one tracking request and return the matching reply.

        Raises:
            TransportError: empty read, short read, socket failure or timeout
            DaemonReplyError: the matching reply reports a failure status
        """
        if self.sock is None:
            raise TransportError("session is closed")

        sequence = self.rng.getrandbits(32)
        request = encode_request(sequence)
        self.stats['queries'] += 1

        try:
            self.sock.sendto(request, self.peer)
        except OSError as e:
            raise TransportError(f"send failed: {e}") from e

        deadline = time.monotonic() + self.timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TransportTimeoutError(
                    f"no reply to sequence {sequence} within {self.timeout}s"
                )
            self.sock.settimeout(remaining)
            try:
                data, addr = self.sock.recvfrom(RECV_BUFFER_SIZE)
            except socket.timeout as e:
                raise TransportTimeoutError(
                    f"no reply to sequence {sequence} within {self.timeout}s"
                ) from e
            except OSError as e:
                raise TransportError(f"receive failed: {e}") from e

            if not self._same_peer(addr):
                self.stats['discarded_sender'] += 1
                logger.warning(f"Discarding datagram from unexpected sender {addr[0]}:{addr[1]}")
                continue

            if len(data) == 0:
                raise EmptyReadError("empty read")
            if len(data) < HEADER_SIZE:
                raise ShortReadError(HEADER_SIZE, len(data))

            header = decode_header(data)
            if header.sequence != sequence:
                self.stats['discarded_sequence'] += 1
                logger.debug(
                    f"Discarding stale reply: expected sequence {sequence}, "
                    f"got {header.sequence}"
                )
                continue

            break

        self._check_reply(header)
        if len(data) < RESPONSE_SIZE:
            raise ShortReadError(RESPONSE_SIZE, len(data))

        response = decode_response(data)
        logger.debug(
            f"Tracking reply: refid={response.ref_id_name} stratum={response.stratum} "
            f"correction={response.current_correction:+.9f}s"
        )
        return response

    @staticmethod
    def _check_reply(header: ReplyHeader):
        if header.pkt_type != PKT_TYPE_CMD_REPLY:
            raise DaemonReplyError(
                f"unexpected packet type {header.pkt_type}",
                status=header.status, reply=header.reply,
            )
        if header.status != STT_SUCCESS:
            raise DaemonReplyError(
                f"daemon returned status {status_name(header.status)}",
                status=header.status, reply=header.reply,
            )
        if header.reply != RPY_TRACKING:
            raise DaemonReplyError(
                f"unexpected reply code {header.reply}",
                status=header.status, reply=header.reply,
            )

    def wait_for_sync(
        self,
        max_attempts: int = DEFAULT_SYNC_ATTEMPTS,
        max_uncertainty_ns: int = DEFAULT_MAX_SYNC_UNCERTAINTY_NS,
        retry_interval: float = DEFAULT_SYNC_RETRY_INTERVAL,
    ) -> TrackingResponse:
        """
        Poll until the daemon reports usable synchronisation.

        A reply is usable when a peer is selected, the reference is
        neither unset nor the daemon's own local clock, and epsilon is
        below max_uncertainty_ns. Transport errors end the wait at once.

        Returns:
            The first usable TrackingResponse

        Raises:
            SyncNotAchievedError: after max_attempts unusable replies
        """
        for attempt in range(1, max_attempts + 1):
            tracking = self.query()
            reason = self._sync_problem(tracking, max_uncertainty_ns)
            if reason is None:
                logger.info(
                    f"Sync achieved: refid={tracking.ref_id_name} stratum={tracking.stratum} "
                    f"(attempt {attempt}/{max_attempts})"
                )
                return tracking

            logger.warning(f"Not synchronised (attempt {attempt}/{max_attempts}): {reason}")
            if attempt < max_attempts and retry_interval > 0:
                time.sleep(retry_interval)

        raise SyncNotAchievedError(
            f"max attempts exceeded waiting for sync ({max_attempts})"
        )

    @staticmethod
    def _sync_problem(tracking: TrackingResponse, max_uncertainty_ns: int) -> Optional[str]:
        if tracking.addr.family == AddressFamily.UNSPEC:
            return "no peer selected"
        if tracking.ref_id == 0 or tracking.ref_id == REFID_LOCAL:
            return f"reference is local (refid {tracking.ref_id_name})"
        eps = epsilon_ns(tracking)
        if eps > max_uncertainty_ns:
            return f"uncertainty {eps / 1e6:.3f}ms above {max_uncertainty_ns / 1e6:.3f}ms"
        return None
