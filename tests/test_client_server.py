"""End-to-end tests over real ZeroMQ sockets on an ephemeral port."""

import time

import pytest

from conftest import wait_until
from glowsync import presence_sync_manager


@pytest.fixture
def make_client(server):
    clients = []

    def _make(**kwargs):
        client = presence_sync_manager(
            server="tcp://127.0.0.1", router_port=server.bound_port, **kwargs
        )
        clients.append(client)
        client.start()
        assert client.wait_until_ready(5.0), "no hello received"
        return client

    yield _make
    for client in clients:
        client.stop()


def _intensity_of(client, user_id):
    record = client.get_presence(user_id)
    return None if record is None else record.intensity


def test_bound_port_is_assigned(server):
    assert server.bound_port and server.bound_port > 0


def test_two_participants(server, make_client):
    a = make_client()
    assert a.self_id is not None
    assert [p.user_id for p in a.get_presence_snapshot()] == [a.self_id]

    joined = []
    a.on_peer_joined.add_listener(joined.append)
    b = make_client()

    # B sees A from the hello; A learns about B from `joined`
    assert b.get_presence(a.self_id) is not None
    assert wait_until(lambda: a.get_presence(b.self_id) is not None)
    assert wait_until(lambda: joined == [b.self_id])
    assert b.get_presence(b.self_id).is_self is True
    assert a.get_presence(b.self_id).is_self is False

    # A speaks
    assert a.send_intensity(0.6)
    assert wait_until(lambda: _intensity_of(b, a.self_id) == 0.6)

    # B shouts beyond range; A sees the clamped value
    assert b.send_intensity(1.7)
    assert wait_until(lambda: _intensity_of(a, b.self_id) == 1.0)
    assert server.registry.snapshot()[1].intensity == 1.0

    # A leaves gracefully
    left = []
    b.on_peer_left.add_listener(left.append)
    a_id = a.self_id
    a.stop()
    assert wait_until(lambda: b.get_presence(a_id) is None)
    assert wait_until(lambda: left == [a_id])
    assert wait_until(lambda: len(server.registry) == 1)


def test_self_intensity_is_local_and_throttled(server, make_client):
    a = make_client()
    b = make_client()

    changes = []
    b.on_intensity_changed.add_listener(lambda uid, value: changes.append((uid, value)))

    assert a.update_self_intensity(0.4) == 0.4
    # Within the throttle window: local record changes, nothing is sent
    assert a.update_self_intensity(0.9) is None
    assert a.get_presence(a.self_id).intensity == 0.9

    assert wait_until(lambda: _intensity_of(b, a.self_id) == 0.4)
    assert wait_until(lambda: changes == [(a.self_id, 0.4)])
    stats = a.get_stats()
    assert stats["updates_sent"] == 1
    assert stats["updates_throttled"] == 1


def test_none_sample_counts_as_zero(server, make_client):
    a = make_client()
    a.update_self_intensity(None)
    assert a.get_presence(a.self_id).intensity == 0.0


def test_sampling_thread_feeds_updates(server, make_client):
    a = make_client()
    b = make_client()

    a.start_sampling(lambda: 0.5, rate_hz=50)
    try:
        assert wait_until(lambda: _intensity_of(b, a.self_id) == 0.5)
    finally:
        a.stop_sampling()


def test_silent_peer_expires_after_heartbeat_timeout(server, make_client):
    b = make_client()
    a = make_client()
    a_id = a.self_id
    assert wait_until(lambda: b.get_presence(a_id) is not None)

    # Stop A's network thread without a disconnect so only the sweep removes it
    a._running = False
    a._network_thread.join(timeout=1.0)

    assert wait_until(lambda: b.get_presence(a_id) is None, timeout=5.0)
    assert server.get_stats()["timeouts"] >= 1
    a._cleanup()


def test_idle_client_is_kept_alive_by_heartbeats(server, make_client):
    a = make_client()
    b = make_client()

    time.sleep(2.5)
    assert b.get_presence(a.self_id) is not None
    assert len(server.registry) == 2


def test_client_rejoins_after_session_expired(server, make_client):
    b = make_client()
    a = make_client()
    old_id = a.self_id
    lost = []
    a.on_session_lost.add_listener(lost.append)

    # Silence A's heartbeats until the server times it out
    a.HEARTBEAT_INTERVAL = 60.0
    assert wait_until(lambda: b.get_presence(old_id) is None, timeout=5.0)

    a.HEARTBEAT_INTERVAL = 1.0
    assert wait_until(lambda: lost == [old_id], timeout=5.0)
    assert wait_until(lambda: a.is_ready and a.self_id not in (None, old_id))
    new_id = a.self_id
    assert wait_until(lambda: b.get_presence(new_id) is not None)
    assert len(server.registry) == 2
    assert server.get_stats()["expired_notices"] >= 1

    assert a.send_intensity(0.8)
    assert wait_until(lambda: _intensity_of(b, new_id) == 0.8)
