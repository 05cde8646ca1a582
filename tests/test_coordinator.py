import threading
from decimal import Decimal

from checkout.coordinator import FinalizeReason, ReleaseCoordinator, release_reservations
from checkout.models import CheckoutSession, LineItem, Reservation

from .conftest import FakeReservasClient


def _session(n=3):
    return CheckoutSession(
        evento={},
        seleccion=[LineItem(i, f"T{i}", 1, Decimal("10")) for i in range(n)],
        reservas=[Reservation(100 + i, i, 1, 9) for i in range(n)],
    )


def test_release_reservations_attempts_every_reservation():
    client = FakeReservasClient(release_failures={101})
    reservas = _session().reservas

    released = release_reservations(client, reservas, "cancelled")

    assert released == [100, 102]
    assert dict(client.release_calls) == {100: 1, 101: 1, 102: 1}


def test_finalize_acts_only_once():
    client = FakeReservasClient()
    coordinator = ReleaseCoordinator(client, _session())

    assert coordinator.finalize(FinalizeReason.UNLOAD) is True
    assert coordinator.finalize(FinalizeReason.TEARDOWN) is False

    assert coordinator.reason is FinalizeReason.UNLOAD
    assert dict(client.release_calls) == {100: 1, 101: 1, 102: 1}
    assert coordinator.wait_settled(0)


def test_concurrent_triggers_release_each_reservation_once():
    client = FakeReservasClient()
    coordinator = ReleaseCoordinator(client, _session(5))
    barrier = threading.Barrier(4)
    results = []

    def trigger(reason):
        barrier.wait()
        results.append(coordinator.finalize(reason))

    threads = [
        threading.Thread(target=trigger, args=(reason,))
        for reason in (
            FinalizeReason.CANCELLED,
            FinalizeReason.UNLOAD,
            FinalizeReason.TEARDOWN,
            FinalizeReason.EXPIRED,
        )
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(results) == [False, False, False, True]
    assert set(client.release_calls) == {100, 101, 102, 103, 104}
    assert all(count == 1 for count in client.release_calls.values())


def test_purchased_session_releases_nothing():
    client = FakeReservasClient()
    coordinator = ReleaseCoordinator(client, _session())

    coordinator.finalize(FinalizeReason.PURCHASED)
    coordinator.finalize(FinalizeReason.UNLOAD)

    assert client.release_calls == {}


def test_consumed_reservations_are_never_released():
    client = FakeReservasClient()
    session = _session()
    coordinator = ReleaseCoordinator(client, session)

    coordinator.mark_consumed(session.reservas[0])
    coordinator.finalize(FinalizeReason.CANCELLED)

    assert dict(client.release_calls) == {101: 1, 102: 1}
    assert coordinator.released == [101, 102]


def test_claim_blocks_later_exits_before_any_release():
    client = FakeReservasClient()
    coordinator = ReleaseCoordinator(client, _session())

    assert coordinator.claim(FinalizeReason.EXPIRED) is True
    assert coordinator.finalized
    assert coordinator.finalize(FinalizeReason.CANCELLED) is False
    assert client.release_calls == {}
    assert not coordinator.wait_settled(0)

    coordinator.dispatch()

    assert coordinator.reason is FinalizeReason.EXPIRED
    assert dict(client.release_calls) == {100: 1, 101: 1, 102: 1}
    assert coordinator.wait_settled(0)
