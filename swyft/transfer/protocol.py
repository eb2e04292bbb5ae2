"""
Transfer Control Protocol

Design Decision: Message Types
==============================

The channel already frames messages and tells text from binary, so the
protocol needs no header on file data:

- Binary message: one chunk of file bytes (64KB, last chunk may be shorter)
- Text "EOF":     end of the current file
- Text "CANCEL":  abort the current file (either direction)
- Text JSON:      {"type": "metadata", "name", "size", "mimeType",
                   optional "index"/"total" for multi-file batches}

Any other text is a malformed control message. Receivers ignore it
so newer peers can add message types without breaking older ones.
"""

import json
from enum import Enum
from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union

from ..errors import MalformedControlMessage

EOF = "EOF"
CANCEL = "CANCEL"
METADATA_TYPE = "metadata"
DEFAULT_MIME_TYPE = "application/octet-stream"

Message = Union[str, bytes]


class MessageKind(Enum):
    """Kinds of message on a transfer channel."""
    METADATA = "metadata"
    CHUNK = "chunk"
    EOF = "eof"
    CANCEL = "cancel"


@dataclass
class FileMetadata:
    """Announcement sent before the first chunk of a file."""
    name: str
    size: int
    mime_type: str = DEFAULT_MIME_TYPE
    index: Optional[int] = None
    total: Optional[int] = None

    def to_dict(self) -> dict:
        data = {
            'type': METADATA_TYPE,
            'name': self.name,
            'size': self.size,
            'mimeType': self.mime_type or DEFAULT_MIME_TYPE,
        }
        if self.index is not None:
            data['index'] = self.index
        if self.total is not None:
            data['total'] = self.total
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> 'FileMetadata':
        """Validate a decoded metadata message."""
        if not isinstance(data, dict) or data.get('type') != METADATA_TYPE:
            raise MalformedControlMessage("Not a metadata message")

        name = data.get('name')
        size = data.get('size')
        if not isinstance(name, str) or not name:
            raise MalformedControlMessage("Metadata without a name")
        if not _is_count(size):
            raise MalformedControlMessage(f"Invalid size in metadata: {size!r}")

        mime_type = data.get('mimeType') or DEFAULT_MIME_TYPE
        if not isinstance(mime_type, str):
            raise MalformedControlMessage("Invalid mimeType in metadata")

        index = data.get('index')
        total = data.get('total')
        if index is not None and not _is_count(index):
            raise MalformedControlMessage("Invalid index in metadata")
        if total is not None and not _is_count(total):
            raise MalformedControlMessage("Invalid total in metadata")

        return cls(name=name, size=size, mime_type=mime_type, index=index, total=total)

    @property
    def is_last(self) -> bool:
        """Whether this is the final file of its batch."""
        if self.index is None or self.total is None:
            return True
        return self.index >= self.total - 1


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def parse_message(message: Message) -> Tuple[MessageKind, Any]:
    """
    Classify a channel message.

    Returns:
        (kind, payload) where payload is the chunk bytes, the
        FileMetadata, or None for sentinels

    Raises:
        MalformedControlMessage: for unrecognized text
    """
    if isinstance(message, (bytes, bytearray, memoryview)):
        return MessageKind.CHUNK, bytes(message)

    if message == EOF:
        return MessageKind.EOF, None
    if message == CANCEL:
        return MessageKind.CANCEL, None

    try:
        data = json.loads(message)
    except (json.JSONDecodeError, TypeError):
        raise MalformedControlMessage(f"Unrecognized control message: {str(message)[:32]!r}")

    return MessageKind.METADATA, FileMetadata.from_dict(data)


def message_size(message: Message) -> int:
    """Bytes a message occupies in a channel buffer."""
    if isinstance(message, str):
        return len(message.encode('utf-8'))
    return len(message)
