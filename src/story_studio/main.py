"""FastAPI application entrypoint."""

from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from story_studio.api.routes import router
from story_studio.config import settings
from story_studio.tools import supabase_storage

logger = structlog.get_logger()

# Finished exports are written here and served under settings.public_files_url
_EXPORT_DIR = Path(settings.output_base_dir).resolve()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "app.startup",
        cors_origins=settings.cors_origins,
        export_dir=str(_EXPORT_DIR),
        history_backend="supabase" if supabase_storage.is_configured() else "memory",
        text_model=settings.text_model,
    )
    yield
    logger.info("app.shutdown")


app = FastAPI(
    title="Story Studio",
    description="Turns a story idea into a narrated, scene-by-scene video",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)

_EXPORT_DIR.mkdir(parents=True, exist_ok=True)
app.mount(settings.public_files_url, StaticFiles(directory=str(_EXPORT_DIR)), name="exports")


@app.get("/health")
async def health_check():
    return {"status": "ok"}
