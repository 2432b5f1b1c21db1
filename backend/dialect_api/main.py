import logging

from fastapi import FastAPI

from .db import Base, engine, ensure_schema
from . import models  # noqa: F401  registers tables on Base
from .settings import settings
from .routers import health, ai
from .routers import auth
from .routers import voice

logging.basicConfig(
	level=settings.log_level.upper(),
	format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Dialect Voice API")
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(ai.router)
app.include_router(voice.router)


@app.get("/info")
def root():
	return {
		"status": "ok",
		"ai_provider": settings.ai_provider,
		"ai_fallback_enabled": settings.ai_enable_fallback,
		"transcription_provider": settings.transcription_provider,
	}


@app.on_event("startup")
async def startup_event():
	# Initialize DB schema
	Base.metadata.create_all(bind=engine)
	# Apply lightweight dev migrations
	try:
		ensure_schema()
	except Exception:
		logger.warning("Schema migration skipped", exc_info=True)


@app.on_event("shutdown")
async def shutdown_event():
	await voice.close_voice_service()
