# MIT License © 2025 Motohiro Suzuki
"""
transport/channel.py

In-memory duplex transport for the handshake simulation.

- ByteChannel: one direction, bounded, never blocks.
    write(data) -> WROTE_ALL | WOULD_BLOCK | FATAL   (all-or-nothing)
    read(n)     -> COUNT(data) | WOULD_BLOCK | FATAL
- ChannelPair: two ByteChannels wired crosswise.
    client_to_server : client writes, server reads
    server_to_client : server writes, client reads
  Both endpoints hold a reference to both directions (ChannelEnd).
  The pair is torn down when the last ChannelEnd is released.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

DEFAULT_CAPACITY = 256 * 1024


class WriteStatus(str, Enum):
    WROTE_ALL = "WROTE_ALL"
    WOULD_BLOCK = "WOULD_BLOCK"
    FATAL = "FATAL"


class ReadStatus(str, Enum):
    COUNT = "COUNT"
    WOULD_BLOCK = "WOULD_BLOCK"
    FATAL = "FATAL"


@dataclass(frozen=True)
class ChannelRead:
    status: ReadStatus
    data: bytes = b""

    @property
    def count(self) -> int:
        return len(self.data)


class ByteChannel:
    def __init__(self, capacity: int = DEFAULT_CAPACITY, *, name: str = "") -> None:
        if capacity <= 0:
            raise ValueError("channel capacity must be > 0")
        self.capacity = int(capacity)
        self.name = name
        self._buf = bytearray()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        return len(self._buf)

    def free(self) -> int:
        return self.capacity - len(self._buf)

    def write(self, data: bytes) -> WriteStatus:
        if self._closed:
            return WriteStatus.FATAL
        b = bytes(data)
        if len(b) > self.free():
            return WriteStatus.WOULD_BLOCK
        self._buf += b
        return WriteStatus.WROTE_ALL

    def read(self, max_bytes: int) -> ChannelRead:
        if self._closed:
            return ChannelRead(ReadStatus.FATAL)
        if max_bytes <= 0:
            return ChannelRead(ReadStatus.COUNT, b"")
        if not self._buf:
            return ChannelRead(ReadStatus.WOULD_BLOCK)
        n = min(int(max_bytes), len(self._buf))
        out = bytes(self._buf[:n])
        del self._buf[:n]
        return ChannelRead(ReadStatus.COUNT, out)

    def close(self) -> None:
        self._closed = True
        self._buf.clear()


class ChannelEnd:
    """
    One endpoint's handle on the pair: it reads from `inbound` and writes to
    `outbound`. Releasing the handle drops this endpoint's reference.
    """

    def __init__(self, pair: "ChannelPair", inbound: ByteChannel, outbound: ByteChannel) -> None:
        self._pair = pair
        self.inbound = inbound
        self.outbound = outbound
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def write(self, data: bytes) -> WriteStatus:
        if self._released:
            return WriteStatus.FATAL
        return self.outbound.write(data)

    def read(self, max_bytes: int) -> ChannelRead:
        if self._released:
            return ChannelRead(ReadStatus.FATAL)
        return self.inbound.read(max_bytes)

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._pair._drop_ref()


class ChannelPair:
    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self.client_to_server = ByteChannel(capacity, name="client->server")
        self.server_to_client = ByteChannel(capacity, name="server->client")
        self._refs = 0
        self._torn_down = False

    @property
    def refs(self) -> int:
        return self._refs

    @property
    def torn_down(self) -> bool:
        return self._torn_down

    def client_end(self) -> ChannelEnd:
        return self._attach(inbound=self.server_to_client, outbound=self.client_to_server)

    def server_end(self) -> ChannelEnd:
        return self._attach(inbound=self.client_to_server, outbound=self.server_to_client)

    def _attach(self, *, inbound: ByteChannel, outbound: ByteChannel) -> ChannelEnd:
        if self._torn_down:
            raise RuntimeError("channel pair already torn down")
        self._refs += 1
        return ChannelEnd(self, inbound, outbound)

    def _drop_ref(self) -> None:
        self._refs -= 1
        if self._refs <= 0:
            self._refs = 0
            self._torn_down = True
            self.client_to_server.close()
            self.server_to_client.close()
