import asyncio
from datetime import datetime, timezone

import pytest

from conftest import ExplodingBus, ExplodingNotifier, actor_for, worker_actor
from quickserve.db import SessionLocal
from quickserve.errors import Forbidden, InvalidTransition, NotAvailable, NotFound, ValidationError
from quickserve.lifecycle import (
    TRANSITIONS,
    BookingLifecycleManager,
    can_capture_payment,
    can_transition,
    is_terminal,
)
from quickserve.models import Booking, BookingStatus, Payment, PaymentStatus, UserRole
from quickserve.workers import directory

INVALID_PAIRS = [
    (current, target)
    for current in BookingStatus
    for target in BookingStatus
    if target not in TRANSITIONS[current]
]


async def fetch_booking(booking_id):
    async with SessionLocal() as s:
        return await s.get(Booking, booking_id)


@pytest.fixture
async def setup(factory):
    customer = await factory.user()
    category = await factory.category("Plumbing")
    worker = await factory.worker(categories=[category], price=80.0)
    admin = await factory.user(role=UserRole.ADMIN)
    return customer, category, worker, admin


def test_terminal_statuses_have_no_way_out():
    assert is_terminal(BookingStatus.COMPLETED)
    assert is_terminal(BookingStatus.CANCELLED)
    assert not is_terminal(BookingStatus.IN_PROGRESS)
    for target in BookingStatus:
        assert not can_transition(BookingStatus.COMPLETED, target)
        assert not can_transition(BookingStatus.CANCELLED, target)


def test_every_non_terminal_status_can_cancel():
    for status in BookingStatus:
        if not is_terminal(status):
            assert can_transition(status, BookingStatus.CANCELLED)


@pytest.mark.parametrize("who", ["admin", "customer", "assigned", "rival"])
@pytest.mark.parametrize("current,target", INVALID_PAIRS)
async def test_pairs_outside_table_are_rejected(db, factory, lifecycle, setup, current, target, who):
    customer, category, worker, admin = setup
    if who == "rival" and current is BookingStatus.ACCEPTED and target is BookingStatus.ACCEPTED:
        pytest.skip("a rival worker's late claim reports NOT_AVAILABLE")
    rival = await factory.worker(categories=[category])
    actors = {
        "admin": actor_for(admin),
        "customer": actor_for(customer),
        "assigned": worker_actor(worker),
        "rival": worker_actor(rival),
    }
    assigned = None if current is BookingStatus.PENDING else worker
    booking = await factory.booking(customer, category, worker=assigned, status=current)

    with pytest.raises(InvalidTransition) as exc:
        await lifecycle.request_transition(db, booking.id, actors[who], target)

    assert exc.value.current == current.value
    assert exc.value.attempted == target.value
    assert exc.value.to_dict()["code"] == "INVALID_STATUS_TRANSITION"
    assert (await fetch_booking(booking.id)).status == current.value


async def test_unknown_booking(db, lifecycle, setup):
    _, _, _, admin = setup
    with pytest.raises(NotFound):
        await lifecycle.request_transition(db, "missing", actor_for(admin), BookingStatus.CANCELLED)


async def test_full_lifecycle_closes_booking_and_notifies_customer(db, factory, notifier, bus, setup):
    customer, category, worker, _ = setup
    fixed = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)
    lifecycle = BookingLifecycleManager(notifier, bus, directory, clock=lambda: fixed)
    booking = await factory.booking(customer, category)
    actor = worker_actor(worker)

    claimed = await lifecycle.request_transition(db, booking.id, actor, BookingStatus.ACCEPTED)
    assert claimed.status == "ACCEPTED"
    assert claimed.worker_id == worker.id
    assert claimed.estimated_price == 80.0

    await lifecycle.request_transition(db, booking.id, actor, BookingStatus.WORKER_EN_ROUTE)
    started = await lifecycle.request_transition(db, booking.id, actor, BookingStatus.IN_PROGRESS)
    assert started.started_at.replace(tzinfo=None) == fixed.replace(tzinfo=None)

    done = await lifecycle.request_transition(
        db, booking.id, actor, BookingStatus.COMPLETED, final_price=55.0
    )
    assert done.status == "COMPLETED"
    assert done.final_price == 55.0
    assert done.completed_at.replace(tzinfo=None) == fixed.replace(tzinfo=None)

    assert notifier.types_for(customer.id) == [
        "BOOKING_ACCEPTED",
        "WORKER_EN_ROUTE",
        "SERVICE_STARTED",
        "SERVICE_COMPLETED",
    ]
    completed = [n for n in notifier.sent if n.type == "SERVICE_COMPLETED"][0]
    assert completed.data == {"bookingId": booking.id, "status": "COMPLETED"}

    statuses = [payload["status"] for topic, _, payload in bus.named("booking:status")]
    assert statuses == ["ACCEPTED", "WORKER_EN_ROUTE", "IN_PROGRESS", "COMPLETED"]
    assert all(topic == f"booking:{booking.id}" for topic, _, _ in bus.named("booking:status"))

    async with SessionLocal() as s:
        refreshed = await directory.get_worker(s, worker.id)
    assert refreshed.total_jobs_completed == 1


async def test_completing_without_final_price_keeps_it_unset(db, factory, lifecycle, setup):
    customer, category, worker, _ = setup
    booking = await factory.booking(customer, category, worker=worker, status=BookingStatus.IN_PROGRESS)

    done = await lifecycle.request_transition(db, booking.id, worker_actor(worker), BookingStatus.COMPLETED)

    assert done.final_price is None
    assert done.completed_at is not None


async def test_final_price_only_on_completion(db, factory, lifecycle, setup):
    customer, category, worker, _ = setup
    booking = await factory.booking(customer, category, worker=worker, status=BookingStatus.ACCEPTED)

    with pytest.raises(ValidationError) as exc:
        await lifecycle.request_transition(
            db, booking.id, worker_actor(worker), BookingStatus.WORKER_EN_ROUTE, final_price=40.0
        )

    assert exc.value.code == "FINAL_PRICE_NOT_ALLOWED"
    assert (await fetch_booking(booking.id)).status == "ACCEPTED"


@pytest.mark.parametrize("price", [0, -10.0])
async def test_final_price_must_be_positive(db, factory, lifecycle, setup, price):
    customer, category, worker, _ = setup
    booking = await factory.booking(customer, category, worker=worker, status=BookingStatus.IN_PROGRESS)

    with pytest.raises(ValidationError) as exc:
        await lifecycle.request_transition(
            db, booking.id, worker_actor(worker), BookingStatus.COMPLETED, final_price=price
        )

    assert exc.value.code == "INVALID_FINAL_PRICE"
    booking = await fetch_booking(booking.id)
    assert booking.status == "IN_PROGRESS"
    assert booking.final_price is None


async def test_concurrent_claims_have_exactly_one_winner(factory, notifier, bus):
    customer = await factory.user()
    category = await factory.category("Electrical")
    workers = [await factory.worker(categories=[category]) for _ in range(5)]
    booking = await factory.booking(customer, category)
    lifecycle = BookingLifecycleManager(notifier, bus, directory)

    async def claim(worker):
        async with SessionLocal() as s:
            return await lifecycle.request_transition(
                s, booking.id, worker_actor(worker), BookingStatus.ACCEPTED
            )

    results = await asyncio.gather(*(claim(w) for w in workers), return_exceptions=True)

    winners = [r for r in results if isinstance(r, Booking)]
    losers = [r for r in results if isinstance(r, NotAvailable)]
    assert len(winners) == 1
    assert len(losers) == 4

    stored = await fetch_booking(booking.id)
    assert stored.status == "ACCEPTED"
    assert stored.worker_id == winners[0].worker_id
    assert stored.worker_id in {w.id for w in workers}
    assert notifier.types_for(customer.id) == ["BOOKING_ACCEPTED"]


async def test_claim_after_another_worker_won_is_not_available(db, factory, lifecycle, setup):
    customer, category, worker, _ = setup
    rival = await factory.worker(categories=[category])
    booking = await factory.booking(customer, category)

    await lifecycle.request_transition(db, booking.id, worker_actor(worker), BookingStatus.ACCEPTED)

    with pytest.raises(NotAvailable):
        await lifecycle.request_transition(db, booking.id, worker_actor(rival), BookingStatus.ACCEPTED)

    assert (await fetch_booking(booking.id)).worker_id == worker.id


async def test_repeated_transition_is_rejected_without_side_effects(db, factory, lifecycle, notifier, setup):
    customer, category, worker, _ = setup
    booking = await factory.booking(customer, category, worker=worker, status=BookingStatus.ACCEPTED)
    actor = worker_actor(worker)

    await lifecycle.request_transition(db, booking.id, actor, BookingStatus.WORKER_EN_ROUTE)
    with pytest.raises(InvalidTransition):
        await lifecycle.request_transition(db, booking.id, actor, BookingStatus.WORKER_EN_ROUTE)

    assert notifier.types_for(customer.id) == ["WORKER_EN_ROUTE"]


async def test_claim_repeated_by_winner_is_invalid_transition(db, factory, lifecycle, setup):
    customer, category, worker, _ = setup
    booking = await factory.booking(customer, category)
    actor = worker_actor(worker)

    await lifecycle.request_transition(db, booking.id, actor, BookingStatus.ACCEPTED)
    with pytest.raises(InvalidTransition):
        await lifecycle.request_transition(db, booking.id, actor, BookingStatus.ACCEPTED)


async def test_concurrent_identical_transitions_apply_once(factory, notifier, bus, setup):
    customer, category, worker, _ = setup
    booking = await factory.booking(customer, category, worker=worker, status=BookingStatus.ACCEPTED)
    lifecycle = BookingLifecycleManager(notifier, bus, directory)

    async def move():
        async with SessionLocal() as s:
            return await lifecycle.request_transition(
                s, booking.id, worker_actor(worker), BookingStatus.WORKER_EN_ROUTE
            )

    results = await asyncio.gather(move(), move(), move(), return_exceptions=True)

    assert len([r for r in results if isinstance(r, Booking)]) == 1
    assert len([r for r in results if isinstance(r, InvalidTransition)]) == 2
    assert notifier.types_for(customer.id) == ["WORKER_EN_ROUTE"]


async def test_customer_cancels_unclaimed_booking(db, factory, lifecycle, notifier, bus, setup):
    customer, category, _, _ = setup
    booking = await factory.booking(customer, category)

    cancelled = await lifecycle.request_transition(db, booking.id, actor_for(customer), BookingStatus.CANCELLED)

    assert cancelled.status == "CANCELLED"
    assert cancelled.worker_id is None
    assert notifier.sent == []
    assert len(bus.named("booking:status")) == 1


async def test_customer_cancel_notifies_assigned_worker(db, factory, lifecycle, notifier, setup):
    customer, category, worker, _ = setup
    booking = await factory.booking(customer, category, worker=worker, status=BookingStatus.ACCEPTED)

    await lifecycle.request_transition(db, booking.id, actor_for(customer), BookingStatus.CANCELLED)

    assert notifier.types_for(worker.user_id) == ["BOOKING_CANCELLED"]
    assert notifier.types_for(customer.id) == []


async def test_worker_cancel_notifies_customer(db, factory, lifecycle, notifier, setup):
    customer, category, worker, _ = setup
    booking = await factory.booking(customer, category, worker=worker, status=BookingStatus.WORKER_EN_ROUTE)

    await lifecycle.request_transition(db, booking.id, worker_actor(worker), BookingStatus.CANCELLED)

    assert notifier.types_for(customer.id) == ["BOOKING_CANCELLED"]
    assert notifier.types_for(worker.user_id) == []


async def test_admin_cancel_notifies_both_parties(db, factory, lifecycle, notifier, setup):
    customer, category, worker, admin = setup
    booking = await factory.booking(customer, category, worker=worker, status=BookingStatus.IN_PROGRESS)

    await lifecycle.request_transition(db, booking.id, actor_for(admin), BookingStatus.CANCELLED)

    assert notifier.types_for(customer.id) == ["BOOKING_CANCELLED"]
    assert notifier.types_for(worker.user_id) == ["BOOKING_CANCELLED"]


async def test_stranger_cannot_cancel(db, factory, lifecycle, setup):
    customer, category, worker, _ = setup
    stranger = await factory.user()
    booking = await factory.booking(customer, category, worker=worker, status=BookingStatus.ACCEPTED)

    with pytest.raises(Forbidden):
        await lifecycle.request_transition(db, booking.id, actor_for(stranger), BookingStatus.CANCELLED)


async def test_customer_cannot_advance_work_statuses(db, factory, lifecycle, setup):
    customer, category, worker, _ = setup
    booking = await factory.booking(customer, category, worker=worker, status=BookingStatus.ACCEPTED)

    with pytest.raises(Forbidden):
        await lifecycle.request_transition(db, booking.id, actor_for(customer), BookingStatus.WORKER_EN_ROUTE)

    assert (await fetch_booking(booking.id)).status == "ACCEPTED"


async def test_other_worker_cannot_accept_requested_booking(db, factory, lifecycle, setup):
    customer, category, worker, _ = setup
    rival = await factory.worker(categories=[category])
    booking = await factory.booking(customer, category, worker=worker)

    with pytest.raises(Forbidden):
        await lifecycle.request_transition(db, booking.id, worker_actor(rival), BookingStatus.ACCEPTED)

    accepted = await lifecycle.request_transition(db, booking.id, worker_actor(worker), BookingStatus.ACCEPTED)
    assert accepted.worker_id == worker.id


async def test_claim_requires_worker_profile(db, factory, lifecycle, setup):
    customer, category, _, _ = setup
    other = await factory.user()
    booking = await factory.booking(customer, category)

    with pytest.raises(Forbidden) as exc:
        await lifecycle.request_transition(db, booking.id, actor_for(other), BookingStatus.ACCEPTED)

    assert exc.value.code == "NOT_WORKER"


async def test_claim_requires_verification(db, factory, lifecycle, setup):
    customer, category, _, _ = setup
    pending = await factory.worker(categories=[category], verified=False)
    booking = await factory.booking(customer, category)

    with pytest.raises(Forbidden) as exc:
        await lifecycle.request_transition(db, booking.id, worker_actor(pending), BookingStatus.ACCEPTED)

    assert exc.value.code == "NOT_VERIFIED"
    stored = await fetch_booking(booking.id)
    assert stored.status == "PENDING"
    assert stored.worker_id is None


async def test_claim_requires_offering_in_category(db, factory, lifecycle, setup):
    customer, category, _, _ = setup
    painting = await factory.category("Painting")
    painter = await factory.worker(categories=[painting])
    booking = await factory.booking(customer, category)

    with pytest.raises(Forbidden) as exc:
        await lifecycle.request_transition(db, booking.id, worker_actor(painter), BookingStatus.ACCEPTED)

    assert exc.value.code == "SERVICE_NOT_OFFERED"


async def test_side_effect_failures_do_not_fail_transition(db, factory, setup):
    customer, category, worker, _ = setup
    booking = await factory.booking(customer, category)
    lifecycle = BookingLifecycleManager(ExplodingNotifier(), ExplodingBus(), directory)

    claimed = await lifecycle.request_transition(db, booking.id, worker_actor(worker), BookingStatus.ACCEPTED)

    assert claimed.status == "ACCEPTED"
    assert (await fetch_booking(booking.id)).worker_id == worker.id


async def test_payment_capture_guard(db, factory, setup):
    customer, category, worker, _ = setup
    booking = await factory.booking(customer, category, worker=worker, status=BookingStatus.COMPLETED)
    in_progress = await factory.booking(customer, category, worker=worker, status=BookingStatus.IN_PROGRESS)

    async with SessionLocal() as s:
        b = await s.get(Booking, in_progress.id)
        await s.refresh(b, ["payment"])
        assert not can_capture_payment(b)

        b = await s.get(Booking, booking.id)
        await s.refresh(b, ["payment"])
        assert can_capture_payment(b)

        s.add(Payment(booking_id=booking.id, amount=80.0, method="MTN_MOMO", status=PaymentStatus.FAILED.value))
        await s.commit()
        await s.refresh(b, ["payment"])
        assert can_capture_payment(b)

        b.payment.status = PaymentStatus.COMPLETED.value
        await s.commit()
        assert not can_capture_payment(b)
