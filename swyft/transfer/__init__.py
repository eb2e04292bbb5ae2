"""
Transfer Module - Chunked File Transfer

Sends and receives files over a message channel with backpressure,
pause/resume and cancel.
"""

from .channel import Channel, ChannelState, MemoryChannel, StreamChannel
from .protocol import FileMetadata, MessageKind, parse_message, EOF, CANCEL
from .progress import TransferProgress
from .receiver import FileReceiver, ReceivedFile, ReceiverState
from .sender import FileSender, SenderState

__all__ = [
    'Channel',
    'ChannelState',
    'MemoryChannel',
    'StreamChannel',
    'FileMetadata',
    'MessageKind',
    'parse_message',
    'EOF',
    'CANCEL',
    'TransferProgress',
    'FileReceiver',
    'ReceivedFile',
    'ReceiverState',
    'FileSender',
    'SenderState',
]
