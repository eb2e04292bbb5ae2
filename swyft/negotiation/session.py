"""
Connection Negotiation

Design Decision: Direct Connection Setup
========================================

Options Considered:
1. Full WebRTC stack (ICE/DTLS/SCTP)
   - NAT traversal, but a heavy native dependency

2. Offerer listens on TCP, answerer dials
   - Works on LANs and with a reachable offerer
   - The offer/answer still travel as opaque blobs through the
     rendezvous server, so the pairing flow is unchanged

Decision: TCP listen/dial with a shared token
- Offerer: start a listener, gather candidate addresses (bounded by a
  2s timeout), publish {"type":"offer","token","candidates"}
- Answerer: dial candidates in order, send the token as the first
  frame, reply {"type":"answer","token"}
- Offerer: accept the connection whose first frame carries the token,
  then stop listening

Connections with a wrong token are dropped, so a stray dial to the
listener cannot hijack the session.
"""

import asyncio
import logging
import secrets
import socket
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..config import CONNECT_TIMEOUT, GATHER_TIMEOUT
from ..errors import NegotiationError, NegotiationTimeout
from ..transfer.channel import StreamChannel, encode_frame, read_frame
from .codes import ANSWER, OFFER, validate_blob

logger = logging.getLogger(__name__)

# Probe address for discovering the outbound interface; nothing is sent
ROUTE_PROBE = ('10.255.255.255', 1)


@dataclass
class Candidate:
    """An address the offerer can be reached on."""
    host: str
    port: int

    def to_dict(self) -> dict:
        return {'host': self.host, 'port': self.port}

    @classmethod
    def from_dict(cls, data: dict) -> 'Candidate':
        return cls(host=data['host'], port=data['port'])


def _local_addresses() -> List[str]:
    addresses = []

    probe = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        probe.connect(ROUTE_PROBE)
        addresses.append(probe.getsockname()[0])
    except OSError:
        pass
    finally:
        probe.close()

    try:
        _, _, host_addresses = socket.gethostbyname_ex(socket.gethostname())
        addresses.extend(host_addresses)
    except OSError:
        pass

    return addresses


async def gather_candidates(port: int, bind_host: str = '0.0.0.0',
                            timeout: float = GATHER_TIMEOUT) -> List[Candidate]:
    """
    Collect addresses for a listener on `port`.

    Interface lookup can hang on misconfigured resolvers, so it is given
    at most `timeout` seconds; loopback is always included.
    """
    if bind_host not in ('0.0.0.0', '', '::'):
        return [Candidate(bind_host, port)]

    hosts: List[str] = []
    try:
        hosts = await asyncio.wait_for(asyncio.to_thread(_local_addresses), timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Candidate gathering timed out after {timeout}s")

    candidates = []
    seen = set()
    for host in hosts:
        if host in seen or host.startswith('127.'):
            continue
        seen.add(host)
        candidates.append(Candidate(host, port))

    # Loopback goes last, after real interfaces
    candidates.append(Candidate('127.0.0.1', port))

    logger.debug(f"Gathered candidates: {[c.host for c in candidates]}")
    return candidates


class Offerer:
    """
    The side that listens and publishes an offer.

    Usage:
        offerer = Offerer()
        offer = await offerer.create_offer()
        # ... deliver offer, receive answer ...
        channel = await offerer.apply_answer(answer)
    """

    def __init__(self, host: str = '0.0.0.0', port: int = 0,
                 gather_timeout: float = GATHER_TIMEOUT,
                 connect_timeout: float = CONNECT_TIMEOUT):
        self.host = host
        self.port = port
        self.gather_timeout = gather_timeout
        self.connect_timeout = connect_timeout

        self.token: Optional[str] = None
        self.candidates: List[Candidate] = []
        self._server: Optional[asyncio.AbstractServer] = None
        self._channel: Optional[asyncio.Future] = None

    async def create_offer(self) -> dict:
        """Start listening and build the offer blob."""
        if self._server is not None:
            raise NegotiationError("Offer already created")

        self.token = secrets.token_hex(16)
        self._channel = asyncio.get_running_loop().create_future()
        self._server = await asyncio.start_server(self._on_connection, self.host, self.port)

        port = self._server.sockets[0].getsockname()[1]
        self.candidates = await gather_candidates(port, self.host, self.gather_timeout)
        logger.info(f"Listening for peer on port {port}")

        return {
            'type': OFFER,
            'token': self.token,
            'candidates': [c.to_dict() for c in self.candidates],
        }

    async def _on_connection(self, reader: asyncio.StreamReader,
                             writer: asyncio.StreamWriter):
        peer = writer.get_extra_info('peername')
        if self._channel is None or self._channel.done():
            writer.close()
            return

        try:
            first = await asyncio.wait_for(read_frame(reader), self.connect_timeout)
        except (asyncio.TimeoutError, ConnectionError, ValueError) as e:
            logger.warning(f"Dropping connection from {peer}: {e}")
            writer.close()
            return

        if first != self.token:
            logger.warning(f"Dropping connection from {peer}: wrong token")
            writer.close()
            return

        if self._channel.done():
            writer.close()
            return

        logger.info(f"Peer connected from {peer}")
        self._channel.set_result(StreamChannel(reader, writer, label="offerer"))

    async def apply_answer(self, answer: dict, timeout: float = None) -> StreamChannel:
        """
        Accept the answer and return the (not yet opened) channel.

        Raises:
            NegotiationError: if the answer does not match this offer
            NegotiationTimeout: if the peer never connected
        """
        if self._channel is None:
            raise NegotiationError("No offer created")

        validate_blob(answer, ANSWER)
        if answer['token'] != self.token:
            raise NegotiationError("Answer does not match this offer")

        timeout = self.connect_timeout if timeout is None else timeout
        try:
            channel = await asyncio.wait_for(asyncio.shield(self._channel), timeout)
        except asyncio.TimeoutError:
            raise NegotiationTimeout("Peer did not connect")
        finally:
            await self.close()

        return channel

    async def close(self):
        """Stop listening. An accepted channel stays open."""
        if self._server is not None:
            self._server.close()
            self._server = None
        if self._channel is not None and not self._channel.done():
            self._channel.cancel()


class Answerer:
    """
    The side that dials the offerer's candidates.
    """

    def __init__(self, connect_timeout: float = CONNECT_TIMEOUT):
        self.connect_timeout = connect_timeout

    async def create_answer(self, offer: dict) -> Tuple[dict, StreamChannel]:
        """
        Connect to the offerer.

        Returns:
            (answer blob, channel not yet opened)

        Raises:
            NegotiationError: if no candidate could be reached
        """
        validate_blob(offer, OFFER)
        token = offer['token']

        for candidate in map(Candidate.from_dict, offer['candidates']):
            try:
                reader, writer = await asyncio.wait_for(
                    asyncio.open_connection(candidate.host, candidate.port),
                    self.connect_timeout,
                )
            except (OSError, asyncio.TimeoutError) as e:
                logger.debug(f"Candidate {candidate.host}:{candidate.port} unreachable: {e}")
                continue

            writer.write(encode_frame(token))
            await writer.drain()
            logger.info(f"Connected to peer at {candidate.host}:{candidate.port}")

            answer = {'type': ANSWER, 'token': token}
            return answer, StreamChannel(reader, writer, label="answerer")

        raise NegotiationError("Could not reach any candidate")
