from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from .. import payments as service
from ..db import get_db
from ..deps import get_directory, get_event_bus, get_notifier, get_payment_provider, get_redis
from ..momo import PaymentProvider
from ..notifications import Notifier
from ..realtime import EventBus
from ..schemas import InitiatePayment, InitiatePaymentResponse, MomoWebhook, PaymentResponse
from ..security import Actor, get_current_actor
from ..workers import WorkerDirectory

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/initiate", response_model=InitiatePaymentResponse)
async def initiate_payment(
    data: InitiatePayment,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    provider: PaymentProvider = Depends(get_payment_provider),
    directory: WorkerDirectory = Depends(get_directory),
    notifier: Notifier = Depends(get_notifier),
    bus: EventBus = Depends(get_event_bus),
):
    payment, message = await service.initiate_payment(db, actor, data, provider, directory, notifier, bus)
    return {"payment": payment, "message": message}


@router.post("/webhook/mtn")
async def mtn_webhook(
    payload: MomoWebhook,
    db: AsyncSession = Depends(get_db),
    redis_client=Depends(get_redis),
    directory: WorkerDirectory = Depends(get_directory),
    notifier: Notifier = Depends(get_notifier),
    bus: EventBus = Depends(get_event_bus),
):
    # TODO: verify the provider signature once MTN issues webhook signing keys
    raw = payload.model_dump(by_alias=True)
    return await service.handle_webhook(db, payload, raw, redis_client, directory, notifier, bus)


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
    directory: WorkerDirectory = Depends(get_directory),
):
    return await service.get_payment_for_actor(db, actor, payment_id, directory)
