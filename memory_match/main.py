from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from memory_match.api.deps import get_service
from memory_match.api.routes import router
from memory_match.websocket_hub import hub

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Honour test overrides so the clock and auto-save drive the same service as the routes.
    service = app.dependency_overrides.get(get_service, get_service)()
    service.hub.subscribe(hub.publish)
    service.start_background()
    logger.info("memory-match ready (grid %dx%d)", service.settings.grid_width, service.settings.grid_height)
    try:
        yield
    finally:
        await service.stop_background()
        service.hub.unsubscribe(hub.publish)


app = FastAPI(title="memory-match", version="0.1.0", lifespan=lifespan)
app.include_router(router)


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "memory-match", "version": "0.1.0"}


def run() -> None:
    import uvicorn

    uvicorn.run("memory_match.main:app", host="0.0.0.0", port=8000)
