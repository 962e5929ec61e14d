import os
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from config import (
    API_PREFIX,
    AUDIO_DIR,
    CORS_ORIGINS,
    LOG_LEVEL,
    RENDERS_DIR,
    VIDEOS_DIR,
    VIDEOS_URL_PREFIX,
)
from pipeline import RenderPipeline
from routers import cleanup, generation
from services import TextGenerator
from storage import VideoStore

# --------------------------------------------------------------------------
# --- Configuration & Setup ---
# --------------------------------------------------------------------------

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s - %(levelname)s - %(message)s")


def create_app(
    pipeline: Optional[RenderPipeline] = None,
    video_store: Optional[VideoStore] = None,
    api_prefix: str = API_PREFIX,
) -> FastAPI:
    """Build the application. Pass a pipeline/store to run against other directories or fakes."""
    video_store = video_store or (pipeline.video_store if pipeline else VideoStore(VIDEOS_DIR))
    if pipeline is None:
        pipeline = RenderPipeline(
            TextGenerator(),
            RENDERS_DIR,
            AUDIO_DIR,
            video_store,
        )

    app = FastAPI(
        title="DSA Animation Narrator",
        description="Generates narrated algorithm visualization videos for DSA problems.",
    )
    app.state.pipeline = pipeline
    app.state.video_store = video_store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials="*" not in CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request body", "details": jsonable_encoder(exc.errors())},
        )

    @app.get("/")
    def read_root():
        return {"status": "🚀 DSA Animation Narrator is running!"}

    app.include_router(generation.router, prefix=api_prefix)
    app.include_router(cleanup.router, prefix=api_prefix)

    os.makedirs(video_store.videos_dir, exist_ok=True)
    app.mount(VIDEOS_URL_PREFIX, StaticFiles(directory=video_store.videos_dir), name="videos")

    return app


app = create_app()
