"""
Peers - Main Controllers

Orchestrates the pieces for each side of a transfer:
- Negotiation (offer/answer) for the direct channel
- Signaling client for exchanging offer/answer by PIN
- FileSender / FileReceiver for the transfer itself
- FileStorage for saving what was received

Without a signaling server, the offer and answer can be exchanged by
hand as connection codes.
"""

import asyncio
import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .config import Config
from .errors import ChannelNotReady, NegotiationTimeout, TransferError
from .file.source import FileBlob, select_files
from .file.storage import FileStorage
from .negotiation import (
    Answerer, Offerer, decode_connection_code, encode_connection_code,
)
from .negotiation.codes import ANSWER, OFFER
from .rendezvous.client import SignalingClient
from .transfer.channel import StreamChannel
from .transfer.progress import ProgressCallback, StatusCallback
from .transfer.receiver import FileReceiver, ReceivedFile, ReceiverState
from .transfer.sender import FileSender, SenderState

logger = logging.getLogger(__name__)


class SendingPeer:
    """
    The side that offers a file.

    Usage:
        peer = SendingPeer(config)
        pin = await peer.host()          # show the PIN to the other person
        await peer.wait_for_peer()
        await peer.send(['report.pdf'])
        await peer.close()
    """

    def __init__(self, config: Config = None,
                 progress_callback: ProgressCallback = None,
                 status_callback: StatusCallback = None):
        self.config = config or Config()
        self.progress_callback = progress_callback
        self.status_callback = status_callback

        self.offerer = Offerer(
            gather_timeout=self.config.gather_timeout,
            connect_timeout=self.config.connect_timeout,
        )
        self.signaling: Optional[SignalingClient] = None
        self.channel: Optional[StreamChannel] = None
        self.sender: Optional[FileSender] = None
        self.pin: Optional[str] = None

    # === Pairing ===

    async def host(self) -> str:
        """Create an offer and a room for it. Returns the room PIN."""
        offer = await self.offerer.create_offer()

        self.signaling = SignalingClient(self.config.server_url,
                                         request_timeout=self.config.connect_timeout)
        await self.signaling.connect()
        self.pin = await self.signaling.create_room(offer)

        logger.info(f"Room created with PIN {self.pin}")
        return self.pin

    async def wait_for_peer(self, timeout: float = None) -> StreamChannel:
        """Wait for the receiver's answer and complete the connection."""
        if self.signaling is None or self.pin is None:
            raise ChannelNotReady("Call host() first")

        timeout = self.config.answer_timeout if timeout is None else timeout
        try:
            answer = await self.signaling.wait_for_answer(self.pin, timeout)
        except asyncio.TimeoutError:
            raise NegotiationTimeout(f"No one joined room {self.pin}")
        channel = await self.offerer.apply_answer(answer)

        # The room is consumed; the signaling connection is no longer needed
        await self.signaling.close()
        return self._attach(channel)

    async def create_code(self) -> str:
        """Manual pairing: create an offer and return it as a connection code."""
        offer = await self.offerer.create_offer()
        return encode_connection_code(offer)

    async def accept_code(self, code: str) -> StreamChannel:
        """Manual pairing: complete the connection from the receiver's answer code."""
        answer = decode_connection_code(code, ANSWER)
        channel = await self.offerer.apply_answer(answer)
        return self._attach(channel)

    def _attach(self, channel: StreamChannel) -> StreamChannel:
        self.channel = channel
        self.sender = FileSender(
            channel,
            chunk_size=self.config.chunk_size,
            high_water_mark=self.config.high_water_mark,
            low_water_mark=self.config.low_water_mark,
            progress_callback=self.progress_callback,
            status_callback=self.status_callback,
        )
        channel.open()
        return channel

    # === Transfer ===

    async def send(self, paths: Sequence[Union[str, Path]],
                   bundle: bool = False) -> SenderState:
        """Send files and folders; folders (or everything, with bundle) are zipped."""
        files = await select_files(paths, bundle=bundle)
        return await self.send_blobs(files)

    async def send_blobs(self, files: List[FileBlob]) -> SenderState:
        if self.sender is None:
            raise ChannelNotReady()
        if len(files) == 1:
            return await self.sender.send(files[0])
        return await self.sender.send_files(files)

    def pause(self) -> bool:
        return self.sender is not None and self.sender.pause()

    def resume(self) -> bool:
        return self.sender is not None and self.sender.resume()

    def cancel(self) -> bool:
        return self.sender is not None and self.sender.cancel()

    async def close(self):
        """Close the channel (flushing what is buffered) and signaling."""
        if self.channel is not None:
            await self.channel.close()
        if self.signaling is not None:
            await self.signaling.close()
        await self.offerer.close()


class ReceivingPeer:
    """
    The side that joins by PIN and receives.

    Usage:
        peer = ReceivingPeer(config)
        await peer.join('123456')
        paths = await peer.receive()
        await peer.close()
    """

    def __init__(self, config: Config = None,
                 progress_callback: ProgressCallback = None,
                 status_callback: StatusCallback = None):
        self.config = config or Config()
        self.progress_callback = progress_callback
        self.status_callback = status_callback

        self.answerer = Answerer(connect_timeout=self.config.connect_timeout)
        self.channel: Optional[StreamChannel] = None
        self.receiver: Optional[FileReceiver] = None
        self._storage: Optional[FileStorage] = None
        self._closed = asyncio.Event()

    @property
    def storage(self) -> FileStorage:
        if self._storage is None:
            self._storage = FileStorage(self.config.output_dir)
        return self._storage

    # === Pairing ===

    async def join(self, pin: str) -> StreamChannel:
        """Join a room by PIN and connect to the sender."""
        signaling = SignalingClient(self.config.server_url,
                                    request_timeout=self.config.connect_timeout)
        await signaling.connect()
        try:
            offer = await signaling.join_room(pin)
            answer, channel = await self.answerer.create_answer(offer)
            await signaling.send_answer(pin, answer)
        finally:
            await signaling.close()

        logger.info(f"Joined room {pin}")
        return self._attach(channel)

    async def answer_code(self, code: str) -> str:
        """Manual pairing: connect from an offer code, return the answer code."""
        offer = decode_connection_code(code, OFFER)
        answer, channel = await self.answerer.create_answer(offer)
        self._attach(channel)
        return encode_connection_code(answer)

    def _attach(self, channel: StreamChannel) -> StreamChannel:
        self.channel = channel
        self.receiver = FileReceiver(
            channel,
            verify_size=self.config.verify_size,
            progress_callback=self.progress_callback,
            status_callback=self.status_callback,
        )
        channel.on_close(self._on_channel_close)
        channel.open()
        return channel

    def _on_channel_close(self):
        self.receiver.handle_close()
        self._closed.set()

    # === Transfer ===

    async def receive_files(self) -> List[ReceivedFile]:
        """
        Collect files until the sender's batch is complete.

        Stops early when the sender cancels; raises TransferError when the
        connection drops in the middle of a file.
        """
        if self.receiver is None:
            raise ChannelNotReady()

        received: List[ReceivedFile] = []
        while True:
            next_file = asyncio.ensure_future(self.receiver.wait_for_file())
            closed = asyncio.ensure_future(self._closed.wait())
            done, _ = await asyncio.wait({next_file, closed},
                                         return_when=asyncio.FIRST_COMPLETED)

            if next_file not in done:
                next_file.cancel()
                if self.receiver.state is ReceiverState.RECEIVING:
                    raise TransferError(
                        f"Transfer stalled: connection closed after "
                        f"{self.receiver.received_size:,} of "
                        f"{self.receiver.metadata.size:,} bytes")
                break

            closed.cancel()
            result = next_file.result()
            if result is None:
                break

            received.append(result)
            if self.receiver.metadata.is_last:
                break

        return received

    async def receive(self, expand: bool = False) -> List[Path]:
        """Receive files and save them to the output directory."""
        paths = []
        for received in await self.receive_files():
            if expand and received.is_bundle:
                paths.extend(await self.storage.save_bundle(received))
            else:
                paths.append(await self.storage.save_file(received))
        return paths

    def cancel(self) -> bool:
        return self.receiver is not None and self.receiver.cancel()

    async def close(self):
        if self.channel is not None:
            await self.channel.close()
