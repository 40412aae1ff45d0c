import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from agents.phase_controller import PhaseController
from services.firestore_service import get_firestore_service
from services.room_registry import RoomRegistry

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Spacescape backend starting up...")
    registry = RoomRegistry(max_cycles=settings.max_cycles, snapshot_store=get_firestore_service())
    app.state.registry = registry
    app.state.controller = PhaseController(registry)
    yield
    app.state.controller.shutdown()
    logger.info("Backend shutting down.")


app = FastAPI(
    title="Spacescape",
    version="0.1.0",
    description="Real-time multiplayer social deduction game — captain vs. android passengers",
    lifespan=lifespan,
)

_origins = list(settings.allowed_origins)
if settings.extra_origin:
    _origins.append(settings.extra_origin)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["Content-Type"],
)


@app.get("/health")
async def health_check():
    return {"status": "ok", "service": "spacescape", "version": "0.1.0"}


from routers.game_router import router as game_router
from routers.ws_router import router as ws_router

app.include_router(game_router, prefix="/api")
app.include_router(ws_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
