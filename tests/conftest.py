"""Shared test fixtures."""

from __future__ import annotations

import asyncio

import pytest

from config import Settings
from mictrack_server.listener import MictrackReceiver

EVENT_TIMEOUT = 2.0


class EventCollector:
    """Receives listener events and lets tests await them."""

    def __init__(self):
        self.beacons: asyncio.Queue = asyncio.Queue()
        self.errors: asyncio.Queue = asyncio.Queue()

    def on_beacon(self, event):
        self.beacons.put_nowait(event)

    def on_error(self, event):
        self.errors.put_nowait(event)

    async def next_beacon(self, timeout: float = EVENT_TIMEOUT):
        return await asyncio.wait_for(self.beacons.get(), timeout)

    async def next_error(self, timeout: float = EVENT_TIMEOUT):
        return await asyncio.wait_for(self.errors.get(), timeout)


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        GPS_TCP_HOST="127.0.0.1",
        GPS_TCP_PORT=0,
        GPS_TCP_BACKLOG=16,
        GPS_TCP_MAX_BUFFER_SIZE=1024,
    )


@pytest.fixture
def events():
    return EventCollector()


@pytest.fixture
async def receiver(settings, events):
    receiver = MictrackReceiver(settings, on_beacon=events.on_beacon, on_error=events.on_error)
    await receiver.start()

    yield receiver

    await receiver.stop()


@pytest.fixture
async def connect(receiver):
    """Open a client connection to the running receiver."""
    writers = []

    async def _connect():
        host, port = receiver.bound_address
        reader, writer = await asyncio.open_connection(host, port)
        writers.append(writer)
        return reader, writer

    yield _connect

    for writer in writers:
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
