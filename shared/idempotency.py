IDEMPOTENCY_TTL_SECONDS = 60 * 60 * 24


def processed_key(event_id: str) -> str:
    return f"processed_event:{event_id}"


async def already_processed(redis_client, event_id: str, ttl: int = IDEMPOTENCY_TTL_SECONDS) -> bool:
    """
    Atomically marks event_id as seen. Returns True if it had been seen before.
    """
    created = await redis_client.set(processed_key(event_id), "1", ex=ttl, nx=True)
    return not created


async def was_processed(redis_client, event_id: str) -> bool:
    """Read-only check; the caller marks the event once its work is committed."""
    return bool(await redis_client.exists(processed_key(event_id)))
