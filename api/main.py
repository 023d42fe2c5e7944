"""FastAPI приложение: админский API, подписки и фоновый счётчик трафика."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import config
from api.routes import router
from api.subscription import router as subscription_router
from db.seed import seed_builtin_inbounds
from db.session import SessionLocal
from services.reload import apply_config
from workers.usage_meter import UsageMeter

logger = logging.getLogger(__name__)


def startup() -> None:
    """Seed встроенных инбаундов и первая сборка конфига."""
    if not config.SERVER_ADDRESS_FROM_ENV:
        logger.warning("SERVER_ADDRESS is not set, links will use default %s", config.SERVER_ADDRESS)
    db = SessionLocal()
    try:
        seed_builtin_inbounds(db)
        outcome = apply_config(db)
        logger.info("Initial config: %s", outcome.status.value)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    from apscheduler.schedulers.background import BackgroundScheduler
    startup()
    meter = UsageMeter()
    scheduler = BackgroundScheduler()
    scheduler.add_job(
        meter.tick,
        "interval",
        seconds=config.METER_INTERVAL,
        id="usage_meter",
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    yield
    scheduler.shutdown(wait=False)


app = FastAPI(title="Inbound Fleet Manager API", version="0.1.0", lifespan=lifespan)


@app.get("/")
def root():
    return {"status": "ok", "docs": "/docs"}


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)
app.include_router(subscription_router)
