"""
File Sender

Design Decision: Flow Control
=============================

Options Considered:
1. Send every chunk as fast as the file can be read
   - The channel buffers the whole file in memory on slow links

2. Wait for an ack from the receiver after each chunk (stop-and-wait)
   - Bounded memory, but one round trip per chunk

3. Watch the channel's buffered amount (high/low water marks)
   - Bounded memory, no extra protocol messages
   - Relies on the channel's buffered-amount-low event

Decision: High/low water marks on the channel buffer
- Before each chunk: if buffered_amount > 16MB, suspend until the
  channel reports it has drained to 4MB
- One chunk read and sent per iteration, no read-ahead, so the check
  before each send is authoritative: the buffer never holds more than
  the high-water mark plus one chunk

State Machine:
```
IDLE --start--> SENDING --pause--> PAUSED
                  |   ^---resume----'  |
                  |                    |
                  +--EOF--> COMPLETE   +--cancel--> CANCELLED
                  +--cancel---------------------->
```
Pause and cancel are flags checked at the top of each iteration; a chunk
already being read is still sent after a pause.
"""

import asyncio
import logging
from enum import Enum
from typing import List, Optional

from ..config import CHUNK_SIZE, HIGH_WATER_MARK, LOW_WATER_MARK
from ..errors import (
    ChannelNotReady, NoFileSelected, ReadFailure, SendFailure,
    TransferError, TransferStateError,
)
from ..file.source import FileBlob
from .channel import Channel
from .progress import TransferProgress, ProgressCallback, StatusCallback
from .protocol import CANCEL, EOF, FileMetadata, Message

logger = logging.getLogger(__name__)


class SenderState(Enum):
    """Sender session states."""
    IDLE = "idle"
    SENDING = "sending"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    COMPLETE = "complete"


def _retrieve_outcome(future: asyncio.Future):
    # Failures are also kept in FileSender.error; awaiting wait() is optional
    if not future.cancelled():
        future.exception()


class FileSender:
    """
    Sends one file at a time over an open channel.

    The sender registers itself for the channel's message, close and
    buffered-amount-low events. A CANCEL from the receiver cancels the
    transfer without echoing CANCEL back.
    """

    def __init__(self, channel: Channel, chunk_size: int = CHUNK_SIZE,
                 high_water_mark: int = HIGH_WATER_MARK,
                 low_water_mark: int = LOW_WATER_MARK,
                 progress_callback: ProgressCallback = None,
                 status_callback: StatusCallback = None):
        if low_water_mark > high_water_mark:
            raise ValueError("low_water_mark must not exceed high_water_mark")

        self.channel = channel
        self.chunk_size = chunk_size
        self.high_water_mark = high_water_mark
        self.low_water_mark = low_water_mark
        self.progress_callback = progress_callback
        self.status_callback = status_callback

        self.state = SenderState.IDLE
        self.file: Optional[FileBlob] = None
        self.metadata: Optional[FileMetadata] = None
        self.offset = 0
        self.progress: Optional[TransferProgress] = None
        self.error: Optional[TransferError] = None

        # Statistics
        self.chunks_sent = 0
        self.backpressure_waits = 0
        self.max_buffered_amount = 0

        self._task: Optional[asyncio.Task] = None
        self._low_waiter: Optional[asyncio.Future] = None
        self._done: Optional[asyncio.Future] = None

        channel.buffered_amount_low_threshold = low_water_mark
        channel.on_buffered_amount_low(self._on_buffered_amount_low)
        channel.on_message(self.handle_message)
        channel.on_close(self.handle_close)

    def _status(self, message: str, level: str = 'info'):
        if level == 'error':
            logger.error(message)
        else:
            logger.info(message)
        if self.status_callback:
            self.status_callback(message, level)

    # === Controls ===

    def start(self, file: FileBlob, index: int = None, total: int = None):
        """
        Announce a file and start the send loop.

        Raises:
            TransferStateError: if the sender is not idle
            ChannelNotReady: if the channel is not open
            NoFileSelected: if no file was given
            SendFailure: if the metadata could not be sent
        """
        if self.state is not SenderState.IDLE:
            raise TransferStateError(f"Cannot start a transfer while {self.state.value}")
        if not self.channel.is_open:
            self._status('Connection not ready!', 'error')
            raise ChannelNotReady()
        if file is None:
            self._status('No file selected!', 'error')
            raise NoFileSelected()

        metadata = FileMetadata(
            name=file.name,
            size=file.size,
            mime_type=file.mime_type,
            index=index,
            total=total,
        )
        try:
            self.channel.send(metadata.to_json())
        except Exception as e:
            self._status(f'Error starting transfer: {e}', 'error')
            raise SendFailure(f"Error starting transfer: {e}") from e

        self.file = file
        self.metadata = metadata
        self.offset = 0
        self.error = None
        self.progress = TransferProgress(
            total_bytes=file.size,
            file_name=file.name,
            index=index,
            total_files=total,
        )
        self._done = asyncio.get_running_loop().create_future()
        self._done.add_done_callback(_retrieve_outcome)
        self.state = SenderState.SENDING

        self._status(f'Sending {file.name} ({file.size:,} bytes)')
        self._schedule_loop()

    def pause(self) -> bool:
        """Stop after the chunk in flight. Valid while sending."""
        if self.state is not SenderState.SENDING:
            return False
        self.state = SenderState.PAUSED
        self._status('Transfer paused')
        return True

    def resume(self) -> bool:
        """Continue a paused transfer. Valid while paused."""
        if self.state is not SenderState.PAUSED:
            return False
        self.state = SenderState.SENDING
        self._status('Transfer resumed')
        # The buffer may already be below the low-water mark, in which case
        # no low event will come to restart the loop
        self._schedule_loop()
        return True

    def cancel(self) -> bool:
        """Abort the transfer and tell the receiver. Valid while sending or paused."""
        if self.state not in (SenderState.SENDING, SenderState.PAUSED):
            return False
        self._abort(notify_peer=True, message='Transfer cancelled')
        return True

    def reset(self):
        """Return a finished or cancelled sender to idle for a new transfer."""
        if self.state in (SenderState.SENDING, SenderState.PAUSED):
            raise TransferStateError("Cannot reset during a transfer")
        self.state = SenderState.IDLE
        self.file = None
        self.metadata = None
        self.offset = 0
        self.progress = None

    async def wait(self) -> SenderState:
        """
        Wait for the current transfer to end.

        Returns:
            COMPLETE or CANCELLED

        Raises:
            ReadFailure / SendFailure if the transfer failed
        """
        if self._done is None:
            raise TransferStateError("No transfer started")
        return await asyncio.shield(self._done)

    async def send(self, file: FileBlob) -> SenderState:
        """Send one file and wait for the outcome."""
        self.start(file)
        return await self.wait()

    async def send_files(self, files: List[FileBlob]) -> SenderState:
        """Send a batch of files one after another, tagged with index/total."""
        if not files:
            raise NoFileSelected()

        state = SenderState.IDLE
        total = len(files)
        for index, file in enumerate(files):
            if self.state in (SenderState.COMPLETE, SenderState.CANCELLED):
                self.reset()
            self.start(file, index=index, total=total)
            state = await self.wait()
            if state is SenderState.CANCELLED:
                break
        return state

    # === Send loop ===

    def _schedule_loop(self):
        # Never run two loops: a loop suspended on backpressure or a read
        # picks up the cleared pause flag on its own
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._send_loop())

    async def _send_loop(self):
        try:
            while True:
                # Yield point: pause and cancel take effect here
                if self.state is not SenderState.SENDING:
                    return

                if self.offset >= self.file.size:
                    self._finish()
                    return

                if self.channel.buffered_amount > self.high_water_mark:
                    await self._wait_for_buffer_low()
                    continue

                chunk = await self._read_chunk()
                if self.state is SenderState.CANCELLED:
                    return
                self._send_chunk(chunk)

        except TransferError as e:
            self._fail(e)
        except asyncio.CancelledError:
            if self.state is not SenderState.CANCELLED:
                raise

    async def _read_chunk(self) -> bytes:
        length = min(self.chunk_size, self.file.size - self.offset)
        try:
            chunk = await self.file.read(self.offset, length)
        except Exception as e:
            raise ReadFailure(f"Error reading file: {e}") from e
        if not chunk:
            raise ReadFailure(f"{self.file.name} ended at {self.offset:,} of "
                              f"{self.file.size:,} bytes")
        return chunk

    def _send_chunk(self, chunk: bytes):
        try:
            self.channel.send(chunk)
        except Exception as e:
            raise SendFailure(f"Error sending file: {e}") from e

        self.offset += len(chunk)
        self.chunks_sent += 1
        self.max_buffered_amount = max(self.max_buffered_amount,
                                       self.channel.buffered_amount)

        self.progress.advance(len(chunk))
        if self.progress_callback:
            self.progress_callback(self.progress)

    async def _wait_for_buffer_low(self):
        self.backpressure_waits += 1
        logger.debug(f"Backpressure: {self.channel.buffered_amount:,} bytes buffered, "
                     f"waiting for {self.low_water_mark:,}")
        self._low_waiter = asyncio.get_running_loop().create_future()
        try:
            await self._low_waiter
        finally:
            self._low_waiter = None

    def _on_buffered_amount_low(self):
        if self._low_waiter is not None and not self._low_waiter.done():
            self._low_waiter.set_result(None)

    def _finish(self):
        try:
            self.channel.send(EOF)
        except Exception as e:
            raise SendFailure(f"Error sending end of file: {e}") from e

        self.state = SenderState.COMPLETE
        speed = self.progress.speed_bytes_per_sec / (1024 * 1024)
        self._status(f'File sent successfully! ({speed:.2f} MB/s average)', 'success')
        self._resolve(SenderState.COMPLETE)

    # === Termination ===

    def _stop_loop(self):
        if self._low_waiter is not None and not self._low_waiter.done():
            self._low_waiter.cancel()
        if (self._task is not None and not self._task.done()
                and self._task is not asyncio.current_task()):
            self._task.cancel()

    def _abort(self, notify_peer: bool, message: str):
        self.state = SenderState.CANCELLED
        self._stop_loop()

        if notify_peer:
            try:
                self.channel.send(CANCEL)
            except Exception as e:
                logger.debug(f"Could not send CANCEL: {e}")

        self._status(message)
        self._resolve(SenderState.CANCELLED)

    def _fail(self, error: TransferError):
        """Abort after a read/send error; the sender becomes idle again."""
        self.state = SenderState.IDLE
        self.error = error
        self._stop_loop()
        self._status(error.message, 'error')
        if self._done is not None and not self._done.done():
            self._done.set_exception(error)

    def _resolve(self, state: SenderState):
        if self._done is not None and not self._done.done():
            self._done.set_result(state)

    # === Channel events ===

    def handle_message(self, data: Message):
        """Handle a message from the receiver."""
        if data == CANCEL:
            if self.state in (SenderState.SENDING, SenderState.PAUSED):
                self._abort(notify_peer=False, message='Receiver cancelled transfer')
            return
        logger.debug("Ignoring unexpected message on sender side")

    def handle_close(self):
        if self.state in (SenderState.SENDING, SenderState.PAUSED):
            self._fail(SendFailure("Connection closed during transfer"))
        else:
            self._status('Connection closed')

    def get_stats(self) -> dict:
        """Get sender statistics."""
        return {
            'state': self.state.value,
            'offset': self.offset,
            'size': self.file.size if self.file else 0,
            'chunks_sent': self.chunks_sent,
            'backpressure_waits': self.backpressure_waits,
            'max_buffered_amount': self.max_buffered_amount,
        }
