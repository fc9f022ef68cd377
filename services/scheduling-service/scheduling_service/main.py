import logging

from fastapi import FastAPI

from shared.database import get_engine, get_session
from shared.rabbitmq import RabbitPublisher
from shared.redis import get_redis

from . import config
from .cache import MemoryCacheStore, RedisCacheStore
from .clock import SYSTEM_CLOCK
from .distance import DistanceService
from .mapbox import MapboxClient
from .middleware import RequestLoggingMiddleware
from .rate_gate import RateGate
from .repository import SqlSchedulingRepository
from .routes import router
from .usage import UsageTracker

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Scheduling Service")
app.add_middleware(RequestLoggingMiddleware)
app.include_router(router)


@app.get("/health")
async def health():
    return {"status": "ok", "service": config.SERVICE_NAME}


@app.on_event("startup")
async def startup():
    app.state.clock = SYSTEM_CLOCK

    app.state.db_engine = None
    app.state.repository = None
    if config.DATABASE_URL:
        app.state.db_engine = get_engine(config.DATABASE_URL)
        app.state.repository = SqlSchedulingRepository(get_session(app.state.db_engine))
    else:
        logger.warning("[%s] SCHEDULING_DATABASE_URL not set, storage endpoints disabled", config.SERVICE_NAME)

    app.state.redis = get_redis(config.REDIS_URL)
    if app.state.redis is not None:
        store = RedisCacheStore(app.state.redis, prefix=config.CACHE_KEY_PREFIX)
    else:
        logger.warning("[%s] REDIS_URL not set, using in-process cache store", config.SERVICE_NAME)
        store = MemoryCacheStore(SYSTEM_CLOCK)

    app.state.publisher = RabbitPublisher(config.RABBIT_URL, config.SERVICE_NAME)
    app.state.usage = UsageTracker(app.state.publisher, SYSTEM_CLOCK)

    if not config.MAPBOX_ACCESS_TOKEN:
        logger.warning("[%s] MAPBOX_ACCESS_TOKEN not set, travel lookups will fall back to estimates", config.SERVICE_NAME)

    app.state.mapbox = MapboxClient(
        config.MAPBOX_ACCESS_TOKEN,
        base_url=config.MAPBOX_BASE_URL,
        timeout=config.MAPBOX_HTTP_TIMEOUT,
        gate=RateGate(max_calls=config.MAPBOX_MAX_CALLS_PER_MINUTE, clock=SYSTEM_CLOCK),
    )
    app.state.distance = DistanceService(
        app.state.mapbox,
        store,
        SYSTEM_CLOCK,
        app.state.usage,
        geocode_ttl_seconds=config.GEOCODE_CACHE_TTL_SECONDS,
        distance_ttl_seconds=config.DISTANCE_CACHE_TTL_SECONDS,
    )


@app.on_event("shutdown")
async def shutdown():
    try:
        await app.state.usage.drain()
        await app.state.publisher.close()
    except Exception as e:
        logger.warning("[%s] publisher shutdown failed: %s", config.SERVICE_NAME, e)

    try:
        await app.state.mapbox.close()
    except Exception as e:
        logger.warning("[%s] mapbox client shutdown failed: %s", config.SERVICE_NAME, e)

    if app.state.redis is not None:
        try:
            await app.state.redis.aclose()
        except Exception as e:
            logger.warning("[%s] redis shutdown failed: %s", config.SERVICE_NAME, e)

    if app.state.db_engine is not None:
        await app.state.db_engine.dispose()
