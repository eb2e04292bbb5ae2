"""Tests for the transfer control protocol and channel framing."""

import asyncio
import json
import struct

import pytest

from swyft.errors import MalformedControlMessage
from swyft.transfer.channel import (
    MAX_FRAME_SIZE, ChannelState, MemoryChannel, StreamChannel,
    encode_frame, read_frame,
)
from swyft.transfer.protocol import (
    CANCEL, EOF, FileMetadata, MessageKind, message_size, parse_message,
)
from swyft.transfer.receiver import FileReceiver, ReceiverState


def test_metadata_wire_shape():
    metadata = FileMetadata(name='a.txt', size=12, mime_type='text/plain')
    assert json.loads(metadata.to_json()) == {
        'type': 'metadata', 'name': 'a.txt', 'size': 12, 'mimeType': 'text/plain',
    }

    batch = FileMetadata(name='b.bin', size=0, index=1, total=3)
    data = batch.to_dict()
    assert data['index'] == 1 and data['total'] == 3
    assert data['mimeType'] == 'application/octet-stream'
    assert not batch.is_last
    assert FileMetadata(name='c', size=1, index=2, total=3).is_last


def test_parse_messages():
    assert parse_message(b'\x00\x01') == (MessageKind.CHUNK, b'\x00\x01')
    assert parse_message(EOF) == (MessageKind.EOF, None)
    assert parse_message(CANCEL) == (MessageKind.CANCEL, None)

    kind, metadata = parse_message(FileMetadata(name='x', size=5).to_json())
    assert kind is MessageKind.METADATA
    assert metadata.name == 'x'
    assert metadata.size == 5


@pytest.mark.parametrize('text', [
    'HELLO',
    '{"type": "ping"}',
    '{"type": "metadata", "size": 1}',
    '{"type": "metadata", "name": "x", "size": -1}',
    '{"type": "metadata", "name": "x", "size": true}',
    '[1, 2]',
])
def test_parse_rejects_unknown_text(text):
    with pytest.raises(MalformedControlMessage):
        parse_message(text)


def test_message_size_counts_utf8_bytes():
    assert message_size('é') == 2
    assert message_size(b'abc') == 3


def test_encode_frame_layout():
    frame = encode_frame('EOF')
    assert frame == struct.pack('>IB', 3, 0x01) + b'EOF'
    assert encode_frame(b'\xff')[4] == 0x02


@pytest.mark.asyncio
async def test_read_frame_sequence():
    reader = asyncio.StreamReader()
    reader.feed_data(encode_frame('{"type":"metadata"}') + encode_frame(b'\x00' * 10)
                     + encode_frame(b''))
    reader.feed_eof()

    assert await read_frame(reader) == '{"type":"metadata"}'
    assert await read_frame(reader) == b'\x00' * 10
    assert await read_frame(reader) == b''
    assert await read_frame(reader) is None


@pytest.mark.asyncio
async def test_read_frame_rejects_oversized():
    reader = asyncio.StreamReader()
    reader.feed_data(struct.pack('>IB', MAX_FRAME_SIZE + 1, 0x02))
    with pytest.raises(ValueError):
        await read_frame(reader)


@pytest.mark.asyncio
async def test_read_frame_truncated_is_end_of_stream():
    reader = asyncio.StreamReader()
    reader.feed_data(struct.pack('>IB', 10, 0x02) + b'abc')
    reader.feed_eof()
    assert await read_frame(reader) is None


@pytest.mark.asyncio
async def test_memory_channel_delivers_in_order(channel_pair):
    a, b = channel_pair
    received = []
    b.on_message(received.append)

    a.send('one')
    a.send(b'two')
    a.send(EOF)
    assert a.buffered_amount == 3 + 3 + 3

    await asyncio.sleep(0.01)
    assert received == ['one', b'two', EOF]
    assert a.buffered_amount == 0


@pytest.mark.asyncio
async def test_memory_channel_low_event_fires_on_crossing(channel_pair):
    a, b = channel_pair
    a.buffered_amount_low_threshold = 4
    events = []
    a.on_buffered_amount_low(lambda: events.append(a.buffered_amount))

    a.pause_delivery()
    for _ in range(4):
        a.send(b'xxxx')
    await asyncio.sleep(0.01)
    assert a.buffered_amount == 16
    assert events == []

    a.resume_delivery()
    await asyncio.sleep(0.01)
    # Edge-triggered: once when dropping to 4, not again at 0
    assert events == [4]


@pytest.mark.asyncio
async def test_memory_channel_close_closes_peer():
    a, b = MemoryChannel.pair()
    a.open()
    b.open()
    closed = []
    b.on_close(lambda: closed.append('b'))

    await a.close()
    assert a.state is ChannelState.CLOSED
    assert b.state is ChannelState.CLOSED
    assert closed == ['b']

    with pytest.raises(ConnectionError):
        a.send('late')


@pytest.mark.asyncio
async def test_stream_channel_over_tcp():
    accepted = asyncio.get_running_loop().create_future()

    async def on_connection(reader, writer):
        accepted.set_result(StreamChannel(reader, writer, label='server'))

    server = await asyncio.start_server(on_connection, '127.0.0.1', 0)
    port = server.sockets[0].getsockname()[1]

    reader, writer = await asyncio.open_connection('127.0.0.1', port)
    client = StreamChannel(reader, writer, label='client')
    remote = await asyncio.wait_for(accepted, 2)

    received = []
    got_all = asyncio.Event()

    def on_message(message):
        received.append(message)
        if message == EOF:
            got_all.set()

    remote.on_message(on_message)
    remote.open()
    client.open()

    client.send(FileMetadata(name='x', size=3).to_json())
    client.send(b'abc')
    client.send(EOF)
    await asyncio.wait_for(got_all.wait(), 2)

    assert received[1:] == [b'abc', EOF]
    assert parse_message(received[0])[1].name == 'x'

    closed = asyncio.Event()
    remote.on_close(closed.set)
    await client.close()
    await asyncio.wait_for(closed.wait(), 2)
    await remote.close()

    server.close()
    await server.wait_closed()


@pytest.mark.asyncio
async def test_read_frame_replaces_invalid_utf8():
    reader = asyncio.StreamReader()
    reader.feed_data(struct.pack('>IB', 2, 0x01) + b'\xff\xfe')
    reader.feed_eof()

    text = await read_frame(reader)
    assert isinstance(text, str)
    with pytest.raises(MalformedControlMessage):
        parse_message(text)


@pytest.mark.asyncio
async def test_undecodable_text_does_not_close_stream_channel(stream_pair):
    client, remote = stream_pair
    receiver = FileReceiver(remote)
    remote.open()
    client.open()

    client.send(FileMetadata(name='x.bin', size=3).to_json())
    client.writer.write(struct.pack('>IB', 2, 0x01) + b'\xff\xfe')
    client.send(b'abc')
    client.send(EOF)

    received = await receiver.wait_for_file(timeout=2)
    assert received.data == b'abc'
    assert receiver.state is ReceiverState.COMPLETE
    assert remote.state is ChannelState.OPEN
