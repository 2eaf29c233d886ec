IDEMPOTENCY_TTL = 86400


def processed_key(event_id: str) -> str:
    return f"processed_event:{event_id}"


async def claim(redis_client, event_id: str, ttl: int = IDEMPOTENCY_TTL) -> bool:
    """
    Atomically mark an event as processed.
    Returns False if another delivery already claimed it.
    """
    claimed = await redis_client.set(processed_key(event_id), "1", ex=ttl, nx=True)
    return bool(claimed)
