import logging

from dotenv import load_dotenv
from fastapi import FastAPI

from app.api.deps import init_server
from app.api.routes import router
from app.infra.redis_client import ping_store
from app.settings import settings_from_env

load_dotenv(override=False)

app = FastAPI(title="exquisite-corpse", version="0.1.0")
app.include_router(router)
# Configure logging
logging.basicConfig(
    level=getattr(logging, settings_from_env().log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@app.on_event("startup")
async def _startup() -> None:
    server = init_server()
    # No store, no game: abort startup.
    ping_store(r=server.r)
    logger.info("game server ready grace=%ss max_attempts=%s", server.settings.grace_period_seconds, server.settings.max_reconnect_attempts)


@app.on_event("shutdown")
async def _shutdown() -> None:
    server = init_server()
    await server.shutdown()


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "exquisite-corpse", "version": "0.1.0"}
