import asyncio
import json
import logging
import uuid
from collections import Counter
from contextvars import ContextVar

from shared.rabbitmq import RabbitPublisher

from . import config
from .cache import TTLCache
from .clock import SYSTEM_CLOCK, Clock
from .schemas import UsageSummary

logger = logging.getLogger(__name__)

USAGE_ROUTING_KEY = "mapbox.usage"

# billable calls; cache hits only ever feed the local summary
PROVIDER_CALLS = ("geocoding", "directions", "matrix")

current_session: ContextVar[str | None] = ContextVar("current_session", default=None)


class UsageTracker:
    """
    Counts mapping calls per request session and mirrors every provider call
    as a usage event. Sessions idle for longer than ttl_seconds are dropped.
    Nothing here may fail a scheduling call.
    """

    def __init__(
        self,
        publisher: RabbitPublisher | None = None,
        clock: Clock = SYSTEM_CLOCK,
        ttl_seconds: int = config.USAGE_SESSION_TTL_SECONDS,
    ):
        self.publisher = publisher
        self.clock = clock
        self._sessions = TTLCache(ttl_seconds, clock)
        self._pending: set[asyncio.Task] = set()

    def record(self, api_type: str, count: int = 1, **metadata):
        session_id = current_session.get() or "unscoped"
        counts = self._sessions.get(session_id)
        if counts is None:
            self._sessions.prune()
            counts = Counter()
        counts[api_type] += count
        self._sessions.set(session_id, counts)

        if api_type not in PROVIDER_CALLS:
            return
        if self.publisher is None or not self.publisher.enabled:
            return

        body = self._event_body(session_id, api_type, count, metadata)
        try:
            task = asyncio.get_running_loop().create_task(self._publish(body))
        except RuntimeError:
            # no running loop: counters are still kept
            return

        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _event_body(self, session_id: str, api_type: str, count: int, metadata: dict) -> str:
        event = {
            "event_id": str(uuid.uuid4()),
            "event_type": USAGE_ROUTING_KEY,
            "source": config.SERVICE_NAME,
            "recorded_at": self.clock.now().isoformat(),
            "session_id": session_id,
            "api_type": api_type,
            "call_count": count,
            "metadata": metadata,
        }
        return json.dumps(event, separators=(",", ":"), default=str)

    async def _publish(self, body: str):
        try:
            await self.publisher.publish(USAGE_ROUTING_KEY, body)
        except Exception as e:
            logger.warning("Usage event publish failed: %s", e)

    def session_count(self) -> int:
        return len(self._sessions)

    def summary(self, session_id: str) -> UsageSummary:
        counts = self._sessions.get(session_id) or Counter()
        calls = sum(counts[name] for name in PROVIDER_CALLS)
        hits = counts["cache_hits"]
        lookups = calls + hits
        return UsageSummary(
            session_id=session_id,
            geocoding=counts["geocoding"],
            directions=counts["directions"],
            matrix=counts["matrix"],
            cache_hits=hits,
            total=calls,
            cache_hit_rate=round(hits / lookups, 3) if lookups else 0.0,
        )

    async def drain(self):
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
