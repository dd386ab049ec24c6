import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from shared.idempotency import already_processed, was_processed

from .config import CURRENCY
from .errors import Forbidden, NotAvailable, NotFound, ValidationError
from .lifecycle import can_capture_payment
from .models import Booking, BookingStatus, Payment, PaymentMethod, PaymentStatus, utcnow
from .momo import PaymentProvider
from .notifications import Notifier, notify_safely
from .realtime import EventBus, publish_safely, user_topic
from .schemas import InitiatePayment, MomoWebhook
from .security import Actor
from .workers import WorkerDirectory

logger = logging.getLogger(__name__)

MOBILE_MONEY_METHODS = {PaymentMethod.MTN_MOMO, PaymentMethod.VODAFONE_CASH}


async def _load_booking_with_payment(db: AsyncSession, booking_id: str) -> Booking:
    result = await db.execute(
        select(Booking)
        .options(selectinload(Booking.payment))
        .where(Booking.id == booking_id)
        .execution_options(populate_existing=True)
    )
    booking = result.scalar_one_or_none()
    if not booking:
        raise NotFound("Booking not found")
    return booking


async def _notify_worker_paid(
    db: AsyncSession,
    booking: Booking,
    payment: Payment,
    directory: WorkerDirectory,
    notifier: Notifier,
    bus: EventBus,
    body: str,
):
    if not booking.worker_id:
        return
    worker = await directory.get_worker(db, booking.worker_id)
    if not worker:
        return

    await publish_safely(
        bus,
        user_topic(worker.user_id),
        "payment:completed",
        {"bookingId": booking.id, "amount": payment.amount, "method": payment.method},
    )
    await notify_safely(
        notifier,
        worker.user_id,
        "PAYMENT_RECEIVED",
        "Payment Received",
        body,
        {"bookingId": booking.id, "paymentId": payment.id},
    )


async def initiate_payment(
    db: AsyncSession,
    actor: Actor,
    data: InitiatePayment,
    provider: PaymentProvider,
    directory: WorkerDirectory,
    notifier: Notifier,
    bus: EventBus,
) -> tuple[Payment, str]:
    booking = await _load_booking_with_payment(db, data.booking_id)

    if booking.customer_id != actor.user_id:
        raise Forbidden("Not your booking")

    if booking.status != BookingStatus.COMPLETED.value:
        raise ValidationError("Booking is not completed yet", code="NOT_COMPLETED")

    if not can_capture_payment(booking):
        raise ValidationError("Payment already completed", code="ALREADY_PAID")

    amount = booking.final_price or booking.estimated_price
    if not amount:
        raise ValidationError("No price set for booking", code="NO_PRICE")

    method = data.method
    is_cash = method is PaymentMethod.CASH
    provider_ref = None

    if method in MOBILE_MONEY_METHODS:
        if not data.phone:
            raise ValidationError("Phone number required for mobile money", code="PHONE_REQUIRED")
        provider_ref = await provider.request_to_pay(
            amount,
            CURRENCY,
            data.phone,
            booking.id,
            f"QuickServe Payment #{booking.id}",
        )

    values = {
        "amount": amount,
        "method": method.value,
        "status": PaymentStatus.COMPLETED.value if is_cash else PaymentStatus.PROCESSING.value,
        "paid_at": utcnow() if is_cash else None,
        "provider_ref": provider_ref,
    }

    if booking.payment:
        # conditional so two racing captures cannot both complete
        result = await db.execute(
            update(Payment)
            .where(
                Payment.id == booking.payment.id,
                Payment.status != PaymentStatus.COMPLETED.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.rollback()
            raise ValidationError("Payment already completed", code="ALREADY_PAID")
        payment_id = booking.payment.id
    else:
        payment = Payment(booking_id=booking.id, **values)
        db.add(payment)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise NotAvailable("Payment already in progress for this booking")
        payment_id = payment.id

    await db.commit()

    result = await db.execute(
        select(Payment).where(Payment.id == payment_id).execution_options(populate_existing=True)
    )
    payment = result.scalar_one()
    logger.info("payment %s for booking %s: %s %s", payment.id, booking.id, payment.method, payment.status)

    if is_cash:
        await _notify_worker_paid(
            db, booking, payment, directory, notifier, bus,
            f"Cash payment of {CURRENCY} {amount:.2f} confirmed",
        )
        return payment, "Cash payment recorded"

    return payment, "Payment initiated. Please confirm on your phone."


async def _settle(db: AsyncSession, payment_id: str, guard, values: dict) -> bool:
    """Applies values only while guard still holds; False when another delivery got there first."""
    result = await db.execute(
        update(Payment)
        .where(Payment.id == payment_id, guard)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        return False

    await db.commit()
    return True


async def handle_webhook(
    db: AsyncSession,
    payload: MomoWebhook,
    raw: dict,
    redis_client,
    directory: WorkerDirectory,
    notifier: Notifier,
    bus: EventBus,
) -> dict:
    status = (payload.status or "").upper()
    event_id = f"momo:{payload.transaction_id}:{status}"

    if redis_client is not None and await was_processed(redis_client, event_id):
        logger.info("duplicate webhook for %s (%s) ignored", payload.transaction_id, status)
        return {"received": True}

    result = await db.execute(
        select(Payment)
        .options(selectinload(Payment.booking))
        .where(Payment.provider_ref == payload.transaction_id)
    )
    payment = result.scalar_one_or_none()

    if not payment:
        logger.warning("payment not found for webhook: %s", payload.transaction_id)
        return {"received": True}

    booking = payment.booking
    payment_id = payment.id

    if status == "SUCCESSFUL":
        # settled payments are never downgraded or re-announced
        settled = await _settle(
            db,
            payment_id,
            Payment.status != PaymentStatus.COMPLETED.value,
            {"status": PaymentStatus.COMPLETED.value, "paid_at": utcnow(), "provider_response": raw},
        )
        if settled:
            await _notify_worker_paid(
                db, booking, payment, directory, notifier, bus,
                f"Mobile money payment of {CURRENCY} {payment.amount:.2f} received",
            )
            await publish_safely(bus, user_topic(booking.customer_id), "payment:success", {"bookingId": booking.id})

    elif status == "FAILED":
        settled = await _settle(
            db,
            payment_id,
            Payment.status == PaymentStatus.PROCESSING.value,
            {"status": PaymentStatus.FAILED.value, "provider_response": raw},
        )
        if settled:
            await publish_safely(bus, user_topic(booking.customer_id), "payment:failed", {"bookingId": booking.id})

    else:
        logger.info("webhook for %s with status %s ignored", payload.transaction_id, status)
        return {"received": True}

    if not settled:
        logger.info("webhook for %s (%s) left payment %s as it was", payload.transaction_id, status, payment_id)

    # marked only after the outcome is committed, so a failed attempt can be replayed
    if redis_client is not None:
        await already_processed(redis_client, event_id)

    return {"received": True}


async def get_payment_for_actor(
    db: AsyncSession,
    actor: Actor,
    payment_id: str,
    directory: WorkerDirectory,
) -> Payment:
    result = await db.execute(
        select(Payment).options(selectinload(Payment.booking)).where(Payment.id == payment_id)
    )
    payment = result.scalar_one_or_none()
    if not payment:
        raise NotFound("Payment not found")

    booking = payment.booking
    if actor.is_admin or booking.customer_id == actor.user_id:
        return payment

    if booking.worker_id:
        worker = await directory.get_worker(db, booking.worker_id)
        if worker and worker.user_id == actor.user_id:
            return payment

    raise Forbidden("Access denied")
