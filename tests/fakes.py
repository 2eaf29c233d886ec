from datetime import datetime, timedelta

from booking_service.gateways import PaymentState, PaymentVerification


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeVerifier:
    def __init__(self):
        self.payments: dict[str, PaymentVerification | Exception] = {}
        self.calls: list[str] = []

    def succeed(self, reference: str, booking_id: str, amount: int | None = 1400):
        self.payments[reference] = PaymentVerification(
            reference=reference,
            status=PaymentState.SUCCEEDED,
            amount=amount,
            bound_booking_id=booking_id,
            gateway_status="COMPLETED",
        )

    def pending(self, reference: str, booking_id: str):
        self.payments[reference] = PaymentVerification(
            reference=reference,
            status=PaymentState.PENDING,
            amount=None,
            bound_booking_id=booking_id,
            gateway_status="CREATED",
        )

    def fail_with(self, reference: str, exc: Exception):
        self.payments[reference] = exc

    async def verify(self, reference: str) -> PaymentVerification:
        self.calls.append(reference)
        result = self.payments[reference]
        if isinstance(result, Exception):
            raise result
        return result


class FakePublisher:
    def __init__(self):
        self.published: list[tuple[str, bytes]] = []

    async def publish(self, routing_key: str, body: bytes):
        self.published.append((routing_key, body))


class FakePipeline:
    def __init__(self, redis):
        self.redis = redis
        self.commands = []

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            self.commands.append((name, args, kwargs))
            return self
        return queue

    async def execute(self):
        results = []
        for name, args, kwargs in self.commands:
            results.append(await getattr(self.redis, name)(*args, **kwargs))
        self.commands = []
        return results


class FakeRedis:
    """The handful of redis.asyncio commands the service uses; TTLs are recorded, not enforced."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None, nx=False):
        if nx and key in self.data:
            return None
        self.data[key] = str(value)
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def incr(self, key):
        value = int(self.data.get(key, 0)) + 1
        self.data[key] = str(value)
        return value

    async def expire(self, key, seconds):
        if key not in self.data:
            return False
        self.ttls[key] = seconds
        return True

    async def delete(self, *keys):
        deleted = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                deleted += 1
            self.ttls.pop(key, None)
        return deleted

    def pipeline(self):
        return FakePipeline(self)
