"""
Router for purging published videos.
"""

import logging
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from dependencies import get_video_store
from exceptions import CleanupError
from schemas import CleanupResponse
from storage import InvalidVideoIdError, VideoStore


router = APIRouter(tags=["cleanup"])


@router.delete("/cleanup/{video_id}", response_model=CleanupResponse, response_model_exclude_none=True)
def cleanup_video(video_id: str, store: VideoStore = Depends(get_video_store)):
    """Delete the published directory of one video."""
    try:
        removed = store.delete(video_id)
    except InvalidVideoIdError:
        return JSONResponse(status_code=400, content={"error": "Invalid video id"})
    except CleanupError as e:
        logging.error(f"Error cleaning up video: {e}")
        return JSONResponse(status_code=500, content={"error": "Failed to cleanup video"})

    if not removed:
        return JSONResponse(status_code=404, content={"error": "Video not found"})
    return CleanupResponse(message=f"Video {video_id} deleted successfully")


@router.delete("/cleanup-all", response_model=CleanupResponse)
def cleanup_all(store: VideoStore = Depends(get_video_store)):
    """Delete every published video directory."""
    try:
        count = store.delete_all()
    except (CleanupError, OSError) as e:
        logging.error(f"Error in cleanup-all: {e}")
        return JSONResponse(status_code=500, content={"error": "Failed to cleanup videos"})
    return CleanupResponse(message=f"Cleaned up {count} video directories", count=count)
