# MIT License © 2025 Motohiro Suzuki
import pytest

from transport.channel import ByteChannel, ChannelPair, ReadStatus, WriteStatus


def test_write_is_all_or_nothing():
    ch = ByteChannel(capacity=8)
    assert ch.write(b"12345") == WriteStatus.WROTE_ALL
    assert ch.write(b"6789") == WriteStatus.WOULD_BLOCK
    assert ch.pending() == 5
    assert ch.write(b"678") == WriteStatus.WROTE_ALL
    assert ch.free() == 0


def test_read_never_blocks():
    ch = ByteChannel(capacity=8)
    r = ch.read(4)
    assert r.status == ReadStatus.WOULD_BLOCK
    assert r.count == 0

    ch.write(b"abcdef")
    r = ch.read(4)
    assert r.status == ReadStatus.COUNT
    assert r.data == b"abcd"
    assert ch.read(100).data == b"ef"


def test_zero_byte_read_counts_zero():
    ch = ByteChannel(capacity=8)
    ch.write(b"x")
    r = ch.read(0)
    assert r.status == ReadStatus.COUNT
    assert r.count == 0


def test_bad_capacity():
    with pytest.raises(ValueError):
        ByteChannel(capacity=0)


def test_pair_is_wired_crosswise():
    pair = ChannelPair(capacity=64)
    client = pair.client_end()
    server = pair.server_end()

    assert client.write(b"hello") == WriteStatus.WROTE_ALL
    assert server.read(64).data == b"hello"
    assert server.write(b"world") == WriteStatus.WROTE_ALL
    assert client.read(64).data == b"world"
    # nothing loops back to the writer
    assert client.read(64).status == ReadStatus.WOULD_BLOCK


def test_pair_torn_down_after_last_release():
    pair = ChannelPair(capacity=64)
    client = pair.client_end()
    server = pair.server_end()
    assert pair.refs == 2

    client.release()
    client.release()  # idempotent
    assert pair.refs == 1
    assert not pair.torn_down
    assert server.write(b"still up") == WriteStatus.WROTE_ALL

    server.release()
    assert pair.torn_down
    assert pair.client_to_server.closed and pair.server_to_client.closed
    assert server.write(b"x") == WriteStatus.FATAL
    assert server.read(1).status == ReadStatus.FATAL

    with pytest.raises(RuntimeError):
        pair.client_end()
