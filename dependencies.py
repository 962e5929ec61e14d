# dependencies.py

from fastapi import Request

from pipeline import RenderPipeline
from storage import VideoStore


# Dependency for FastAPI to get the coordinator built at startup
def get_pipeline(request: Request) -> RenderPipeline:
    return request.app.state.pipeline


def get_video_store(request: Request) -> VideoStore:
    return request.app.state.video_store
