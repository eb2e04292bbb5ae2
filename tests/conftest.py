"""Shared pytest fixtures for all tests."""

import asyncio

import pytest
import pytest_asyncio

from swyft.config import Config
from swyft.rendezvous.service import RendezvousService
from swyft.rendezvous.store import MemoryRoomStore
from swyft.transfer.channel import MemoryChannel, StreamChannel


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    """Clock that only moves when the test says so."""
    return FakeClock()


@pytest.fixture
def service(clock):
    """
    Rendezvous service with a fake clock and a recording notifier.

    Pushed events are appended to service.pushed as
    (connection_id, event, payload).
    """
    pushed = []

    async def notifier(connection_id, event, payload):
        pushed.append((connection_id, event, payload))
        return True

    svc = RendezvousService(store=MemoryRoomStore(clock=clock), notifier=notifier)
    svc.pushed = pushed
    return svc


@pytest_asyncio.fixture
async def channel_pair():
    """Two open in-memory channel ends, closed after the test."""
    a, b = MemoryChannel.pair()
    a.open()
    b.open()
    yield a, b
    await a.close()


@pytest.fixture
def config(tmp_path):
    """Config writing received files into a temp directory."""
    return Config(
        output_dir=tmp_path / 'received',
        gather_timeout=0.5,
        connect_timeout=2.0,
    )


@pytest.fixture
def sample_file(tmp_path):
    """A 200KB file with non-repeating content."""
    file_path = tmp_path / 'sample.bin'
    file_path.write_bytes(bytes(i % 251 for i in range(200_000)))
    return file_path


@pytest_asyncio.fixture
async def stream_pair():
    """Client and server StreamChannel ends over loopback TCP, not yet opened."""
    accepted = asyncio.get_running_loop().create_future()

    async def on_connection(reader, writer):
        accepted.set_result(StreamChannel(reader, writer, label='server'))

    server = await asyncio.start_server(on_connection, '127.0.0.1', 0)
    port = server.sockets[0].getsockname()[1]

    reader, writer = await asyncio.open_connection('127.0.0.1', port)
    client = StreamChannel(reader, writer, label='client')
    remote = await asyncio.wait_for(accepted, 2)

    yield client, remote

    await client.close()
    await remote.close()
    server.close()
