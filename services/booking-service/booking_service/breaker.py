import time


class CircuitBreakerOpen(Exception):
    pass


class CircuitBreaker:
    """
    Redis-backed circuit breaker for a payment gateway, shared by every
    booking-service instance.

    States:
      - CLOSED: allow traffic, count failures
      - OPEN: block traffic for reset_timeout seconds
      - HALF_OPEN: one caller holds the probe key and reaches the gateway;
        everyone else is still blocked until the probe reports back
    """

    def __init__(
        self,
        redis_client,
        name: str,
        failure_threshold: int = 5,
        reset_timeout_seconds: int = 15,
    ):
        self.redis = redis_client
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout_seconds = reset_timeout_seconds

    def _key(self, part: str) -> str:
        return f"cb:{self.name}:{part}"

    async def _get_state(self) -> str:
        state = await self.redis.get(self._key("state"))
        return state or "CLOSED"

    async def _claim_probe(self) -> bool:
        # expires so a probe that never reports back does not wedge the breaker
        claimed = await self.redis.set(self._key("probe"), "1", ex=self.reset_timeout_seconds, nx=True)
        return bool(claimed)

    async def allow_request(self) -> None:
        state = await self._get_state()

        if state == "OPEN":
            opened_at = await self.redis.get(self._key("opened_at"))
            if not opened_at:
                await self.close()
                return

            if (time.time() - float(opened_at)) < self.reset_timeout_seconds:
                raise CircuitBreakerOpen(f"Circuit breaker OPEN for {self.name}")

            await self.redis.set(self._key("state"), "HALF_OPEN")
            state = "HALF_OPEN"

        if state == "HALF_OPEN" and not await self._claim_probe():
            raise CircuitBreakerOpen(f"Circuit breaker HALF_OPEN for {self.name}, probe in flight")

    async def record_success(self) -> None:
        if await self._get_state() != "CLOSED":
            await self.close()
            return
        await self.redis.delete(self._key("failures"))

    async def record_failure(self) -> None:
        if await self._get_state() == "HALF_OPEN":
            await self.open()
            return

        failures = await self.redis.incr(self._key("failures"))
        if failures == 1:
            await self.redis.expire(self._key("failures"), 60)

        if failures >= self.failure_threshold:
            await self.open()

    async def open(self) -> None:
        ttl = self.reset_timeout_seconds + 30
        pipe = self.redis.pipeline()
        pipe.set(self._key("state"), "OPEN", ex=ttl)
        pipe.set(self._key("opened_at"), str(time.time()), ex=ttl)
        pipe.delete(self._key("probe"))
        await pipe.execute()

    async def close(self) -> None:
        pipe = self.redis.pipeline()
        pipe.set(self._key("state"), "CLOSED", ex=3600)
        pipe.delete(self._key("failures"), self._key("opened_at"), self._key("probe"))
        await pipe.execute()
