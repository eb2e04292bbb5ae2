"""Tests for connection codes and TCP offer/answer negotiation."""

import asyncio

import pytest

from swyft.errors import InvalidConnectionCode, NegotiationError, NegotiationTimeout
from swyft.file.source import FileBlob
from swyft.negotiation import (
    Answerer, Offerer, decode_connection_code, encode_connection_code, gather_candidates,
)
from swyft.transfer.channel import encode_frame
from swyft.transfer.receiver import FileReceiver
from swyft.transfer.sender import FileSender, SenderState

OFFER = {'type': 'offer', 'token': 'ab12cd', 'candidates': [{'host': '10.0.0.5', 'port': 5000}]}


def test_code_is_compact_json():
    code = encode_connection_code(OFFER)
    assert ' ' not in code
    assert decode_connection_code(code) == OFFER


def test_decode_strips_whitespace_and_zero_width():
    code = encode_connection_code(OFFER)
    noisy = "\n  \ufeff" + code[:10] + "\u200b\n" + code[10:] + " \u200d\n"
    assert decode_connection_code(noisy, 'offer') == OFFER


@pytest.mark.parametrize('code', [
    '',
    '   ',
    'hello',
    '[1, 2]',
    '{"type": "offer", "token": "ab"',
    '{"type": "hello", "token": "ab"}',
    '{"type": "offer", "token": "ab"}',
    '{"type": "offer", "token": "ab", "candidates": []}',
    '{"type": "offer", "token": "ab", "candidates": [{"host": "x", "port": 0}]}',
    '{"type": "answer"}',
    '{"type": "answer", "token": ""}',
])
def test_decode_rejects_invalid_codes(code):
    with pytest.raises(InvalidConnectionCode):
        decode_connection_code(code)


def test_decode_checks_expected_type():
    code = encode_connection_code({'type': 'answer', 'token': 'ab'})
    with pytest.raises(InvalidConnectionCode):
        decode_connection_code(code, 'offer')


@pytest.mark.asyncio
async def test_gather_candidates_specific_host():
    assert [c.to_dict() for c in await gather_candidates(4000, '127.0.0.1')] == [
        {'host': '127.0.0.1', 'port': 4000}]


@pytest.mark.asyncio
async def test_gather_candidates_ends_with_loopback():
    candidates = await gather_candidates(4000, '0.0.0.0', timeout=1.0)
    assert candidates[-1].host == '127.0.0.1'
    assert all(c.port == 4000 for c in candidates)


@pytest.mark.asyncio
async def test_offer_answer_yields_channel_pair():
    offerer = Offerer(host='127.0.0.1')
    offer = await offerer.create_offer()
    assert offer['type'] == 'offer'
    assert offer['candidates'][0]['host'] == '127.0.0.1'

    answer, answer_channel = await Answerer(connect_timeout=2).create_answer(offer)
    assert answer == {'type': 'answer', 'token': offer['token']}

    offer_channel = await offerer.apply_answer(answer, timeout=2)

    receiver = FileReceiver(answer_channel)
    sender = FileSender(offer_channel, chunk_size=4096)
    offer_channel.open()
    answer_channel.open()
    assert offer_channel.is_open and answer_channel.is_open

    data = bytes(i % 256 for i in range(100_000))
    assert await sender.send(FileBlob.from_bytes('tcp.bin', data)) is SenderState.COMPLETE
    received = await receiver.wait_for_file(timeout=5)
    assert received.data == data

    await offer_channel.close()
    await answer_channel.close()


@pytest.mark.asyncio
async def test_answer_with_wrong_token_is_rejected():
    offerer = Offerer(host='127.0.0.1')
    await offerer.create_offer()
    with pytest.raises(NegotiationError):
        await offerer.apply_answer({'type': 'answer', 'token': 'not-it'}, timeout=0.5)
    await offerer.close()


@pytest.mark.asyncio
async def test_peer_that_never_dials_times_out():
    offerer = Offerer(host='127.0.0.1')
    offer = await offerer.create_offer()
    with pytest.raises(NegotiationTimeout):
        await offerer.apply_answer({'type': 'answer', 'token': offer['token']}, timeout=0.2)


@pytest.mark.asyncio
async def test_stray_connection_with_wrong_token_is_dropped():
    offerer = Offerer(host='127.0.0.1')
    offer = await offerer.create_offer()
    port = offer['candidates'][0]['port']

    reader, writer = await asyncio.open_connection('127.0.0.1', port)
    writer.write(encode_frame('wrong-token'))
    await writer.drain()
    assert await reader.read() == b''
    writer.close()

    answer, channel = await Answerer(connect_timeout=2).create_answer(offer)
    offer_channel = await offerer.apply_answer(answer, timeout=2)
    await offer_channel.close()
    await channel.close()


@pytest.mark.asyncio
async def test_unreachable_candidates():
    offer = {'type': 'offer', 'token': 'ab', 'candidates': [{'host': '127.0.0.1', 'port': 1}]}
    with pytest.raises(NegotiationError):
        await Answerer(connect_timeout=0.5).create_answer(offer)
