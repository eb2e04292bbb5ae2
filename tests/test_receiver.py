"""Tests for the receiver state machine."""

import asyncio

import pytest

from swyft.file.source import FileBlob
from swyft.transfer.protocol import CANCEL, EOF, FileMetadata
from swyft.transfer.receiver import FileReceiver, ReceiverState
from swyft.transfer.sender import FileSender, SenderState


def metadata(name='a.bin', size=6, **kwargs) -> str:
    return FileMetadata(name=name, size=size, **kwargs).to_json()


def test_reassembles_chunks_in_order():
    files = []
    receiver = FileReceiver(on_file=files.append)

    receiver.handle_message(metadata(size=6, mime_type='text/plain'))
    assert receiver.state is ReceiverState.RECEIVING
    receiver.handle_message(b'abc')
    receiver.handle_message(b'def')
    assert receiver.received_size == 6
    receiver.handle_message(EOF)

    assert receiver.state is ReceiverState.COMPLETE
    assert len(files) == 1
    assert files[0].data == b'abcdef'
    assert files[0].mime_type == 'text/plain'
    assert receiver.files == files


def test_zero_byte_file_finalizes_empty():
    receiver = FileReceiver()
    receiver.handle_message(metadata(name='empty.txt', size=0))
    receiver.handle_message(EOF)

    assert receiver.state is ReceiverState.COMPLETE
    assert receiver.files[0].data == b''
    assert receiver.files[0].name == 'empty.txt'


def test_eof_without_data_finalizes_nothing():
    receiver = FileReceiver()
    receiver.handle_message(metadata(size=100))
    receiver.handle_message(EOF)

    assert receiver.state is ReceiverState.IDLE
    assert receiver.files == []


def test_metadata_while_receiving_is_rejected():
    statuses = []
    receiver = FileReceiver(status_callback=lambda message, level: statuses.append(level))
    receiver.handle_message(metadata(name='first.bin', size=4))
    receiver.handle_message(b'ab')

    receiver.handle_message(metadata(name='second.bin', size=10))
    assert receiver.metadata.name == 'first.bin'
    assert receiver.received_size == 2
    assert statuses[-1] == 'error'

    receiver.handle_message(b'cd')
    receiver.handle_message(EOF)
    assert receiver.files[0].data == b'abcd'


def test_sender_cancel_discards_and_allows_new_file():
    receiver = FileReceiver()
    receiver.handle_message(metadata(size=10))
    receiver.handle_message(b'12345')
    receiver.handle_message(CANCEL)

    assert receiver.state is ReceiverState.CANCELLED
    assert receiver.received_size == 0

    receiver.handle_message(metadata(name='retry.bin', size=3))
    receiver.handle_message(b'xyz')
    receiver.handle_message(EOF)
    assert receiver.files[0].name == 'retry.bin'
    assert receiver.files[0].data == b'xyz'


def test_out_of_state_messages_are_ignored():
    receiver = FileReceiver()
    receiver.handle_message(b'stray chunk')
    receiver.handle_message(EOF)
    receiver.handle_message(CANCEL)
    assert receiver.state is ReceiverState.IDLE
    assert receiver.received_size == 0


def test_malformed_text_is_ignored():
    receiver = FileReceiver()
    receiver.handle_message(metadata(size=3))
    receiver.handle_message('PING')
    receiver.handle_message('{"type": "resume"}')
    receiver.handle_message(b'abc')
    receiver.handle_message(EOF)
    assert receiver.files[0].data == b'abc'


def test_no_limit_on_exceeding_declared_size():
    receiver = FileReceiver()
    receiver.handle_message(metadata(size=2))
    receiver.handle_message(b'abcd')
    receiver.handle_message(EOF)
    assert receiver.files[0].data == b'abcd'


def test_verify_size_cancels_on_mismatch():
    receiver = FileReceiver(verify_size=True)
    receiver.handle_message(metadata(size=10))
    receiver.handle_message(b'abc')
    receiver.handle_message(EOF)
    assert receiver.state is ReceiverState.CANCELLED
    assert receiver.files == []


def test_batch_fields_and_bundle_flag():
    receiver = FileReceiver()
    receiver.handle_message(metadata(name='photos.ZIP', size=1, index=0, total=2))
    receiver.handle_message(b'z')
    receiver.handle_message(EOF)

    received = receiver.files[0]
    assert (received.index, received.total) == (0, 2)
    assert received.is_bundle
    assert not receiver.metadata.is_last


@pytest.mark.asyncio
async def test_wait_for_file_reports_cancel_as_none():
    receiver = FileReceiver()
    waiter = asyncio.ensure_future(receiver.wait_for_file(timeout=2))

    receiver.handle_message(metadata(size=4))
    receiver.handle_message(CANCEL)
    assert await waiter is None


@pytest.mark.asyncio
async def test_local_cancel_stops_sender(channel_pair):
    a, b = channel_pair
    receiver = FileReceiver(b)
    sender = FileSender(a, chunk_size=1024, high_water_mark=4096, low_water_mark=1024)

    sender.start(FileBlob.from_bytes('x.bin', bytes(200_000)))

    for _ in range(200):
        if receiver.received_size > 0:
            break
        await asyncio.sleep(0.001)

    assert receiver.cancel() is True
    assert receiver.cancel() is False
    assert receiver.state is ReceiverState.CANCELLED

    assert await asyncio.wait_for(sender.wait(), 2) is SenderState.CANCELLED
    assert sender.offset < 200_000
