"""
File Receiver

Reassembles files from the message stream produced by FileSender.

State Machine:
```
IDLE/COMPLETE/CANCELLED --metadata--> RECEIVING --EOF--> COMPLETE
                                          |
                                          +--CANCEL--> CANCELLED
```
Every dispatch checks the state first; messages that are not valid in
the current state are dropped. Chunks are appended in arrival order,
the channel guarantees ordering.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from ..errors import MalformedControlMessage, SizeMismatch
from .channel import Channel
from .progress import TransferProgress, ProgressCallback, StatusCallback
from .protocol import CANCEL, FileMetadata, Message, MessageKind, parse_message

logger = logging.getLogger(__name__)


class ReceiverState(Enum):
    """Receiver session states."""
    IDLE = "idle"
    RECEIVING = "receiving"
    CANCELLED = "cancelled"
    COMPLETE = "complete"


@dataclass
class ReceivedFile:
    """A fully reassembled file."""
    name: str
    mime_type: str
    data: bytes
    index: Optional[int] = None
    total: Optional[int] = None

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_bundle(self) -> bool:
        """Zip bundles can be expanded member by member."""
        return self.name.lower().endswith('.zip')


FileCallback = Callable[[ReceivedFile], None]


class FileReceiver:
    """
    Receives files over a channel.

    Completed files are collected in `files`, passed to `on_file` and
    handed to anyone awaiting `wait_for_file()`.
    """

    def __init__(self, channel: Channel = None, verify_size: bool = False,
                 progress_callback: ProgressCallback = None,
                 status_callback: StatusCallback = None,
                 on_file: FileCallback = None):
        self.channel = channel
        self.verify_size = verify_size
        self.progress_callback = progress_callback
        self.status_callback = status_callback
        self.on_file = on_file

        self.state = ReceiverState.IDLE
        self.metadata: Optional[FileMetadata] = None
        self.received_size = 0
        self.progress: Optional[TransferProgress] = None
        self.files: List[ReceivedFile] = []

        self._chunks: List[bytes] = []
        self._outcomes: asyncio.Queue = asyncio.Queue()

        if channel is not None:
            channel.on_message(self.handle_message)
            channel.on_close(self.handle_close)

    def _status(self, message: str, level: str = 'info'):
        if level == 'error':
            logger.error(message)
        else:
            logger.info(message)
        if self.status_callback:
            self.status_callback(message, level)

    # === Dispatch ===

    def handle_message(self, data: Message):
        """Handle one message from the sender."""
        try:
            kind, payload = parse_message(data)
        except MalformedControlMessage as e:
            logger.debug(f"Ignoring malformed control message: {e.message}")
            return

        if kind is MessageKind.METADATA:
            self._on_metadata(payload)
        elif kind is MessageKind.CHUNK:
            self._on_chunk(payload)
        elif kind is MessageKind.EOF:
            self._on_eof()
        elif kind is MessageKind.CANCEL:
            self._on_cancel()

    def _on_metadata(self, metadata: FileMetadata):
        if self.state is ReceiverState.RECEIVING:
            self._status(f'Metadata for {metadata.name} arrived while receiving '
                         f'{self.metadata.name}; ignored', 'error')
            return

        self.metadata = metadata
        self._discard()
        self.progress = TransferProgress(
            total_bytes=metadata.size,
            file_name=metadata.name,
            index=metadata.index,
            total_files=metadata.total,
        )
        self.state = ReceiverState.RECEIVING

        batch = ''
        if metadata.index is not None and metadata.total is not None:
            batch = f' [{metadata.index + 1}/{metadata.total}]'
        self._status(f'Receiving {metadata.name} ({metadata.size:,} bytes){batch}')

    def _on_chunk(self, chunk: bytes):
        if self.state is not ReceiverState.RECEIVING:
            logger.debug(f"Dropping {len(chunk)} byte chunk while {self.state.value}")
            return

        self._chunks.append(chunk)
        self.received_size += len(chunk)

        if self.metadata.size > 0:
            self.progress.advance(len(chunk))
            if self.progress_callback:
                self.progress_callback(self.progress)

    def _on_eof(self):
        if self.state is not ReceiverState.RECEIVING:
            logger.debug(f"Dropping EOF while {self.state.value}")
            return

        if self.received_size == 0 and self.metadata.size != 0:
            logger.warning(f"EOF for {self.metadata.name} before any data; nothing to save")
            self.state = ReceiverState.IDLE
            return

        if self.verify_size and self.received_size != self.metadata.size:
            error = SizeMismatch(f"{self.metadata.name}: received {self.received_size:,} "
                                 f"of {self.metadata.size:,} bytes")
            self._discard()
            self.state = ReceiverState.CANCELLED
            self._status(error.message, 'error')
            self._outcomes.put_nowait(None)
            return

        received = ReceivedFile(
            name=self.metadata.name,
            mime_type=self.metadata.mime_type,
            data=b''.join(self._chunks),
            index=self.metadata.index,
            total=self.metadata.total,
        )
        self._discard()
        self.state = ReceiverState.COMPLETE
        self.files.append(received)

        self._status(f'File received: {received.name} ({received.size:,} bytes)', 'success')
        if self.on_file:
            self.on_file(received)
        self._outcomes.put_nowait(received)

    def _on_cancel(self):
        if self.state is not ReceiverState.RECEIVING:
            return
        self._discard()
        self.state = ReceiverState.CANCELLED
        self._status('Transfer cancelled by sender')
        self._outcomes.put_nowait(None)

    def _discard(self):
        self._chunks = []
        self.received_size = 0

    def handle_close(self):
        if self.state is ReceiverState.RECEIVING:
            self._status(f'Connection closed after {self.received_size:,} of '
                         f'{self.metadata.size:,} bytes', 'error')
        else:
            self._status('Connection closed')

    # === Controls ===

    def cancel(self) -> bool:
        """Abort the current file and ask the sender to stop."""
        if self.state is not ReceiverState.RECEIVING:
            return False

        if self.channel is not None:
            try:
                self.channel.send(CANCEL)
            except Exception as e:
                logger.debug(f"Could not send CANCEL: {e}")

        self._discard()
        self.state = ReceiverState.CANCELLED
        self._status('Transfer cancelled')
        self._outcomes.put_nowait(None)
        return True

    async def wait_for_file(self, timeout: float = None) -> Optional[ReceivedFile]:
        """
        Wait for the next file to finish.

        Returns:
            The ReceivedFile, or None if that transfer was cancelled

        Raises:
            asyncio.TimeoutError: if nothing finished within `timeout`
        """
        return await asyncio.wait_for(self._outcomes.get(), timeout)

    def get_stats(self) -> dict:
        """Get receiver statistics."""
        return {
            'state': self.state.value,
            'file': self.metadata.name if self.metadata else None,
            'received_size': self.received_size,
            'expected_size': self.metadata.size if self.metadata else 0,
            'files_received': len(self.files),
        }
