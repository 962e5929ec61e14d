"""
Router for animation generation endpoints.
Handles problem analysis and narrated animation rendering.
"""

import logging
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from dependencies import get_pipeline
from exceptions import PipelineError
from pipeline import RenderPipeline
from schemas import AnalyzeRequest, AnalyzeResponse, AnimationRequest, AnimationResponse


# Create the router
router = APIRouter(tags=["generation"])


@router.post("/analyze", response_model=AnalyzeResponse, response_model_exclude_none=True)
async def analyze(request: AnalyzeRequest, pipeline: RenderPipeline = Depends(get_pipeline)):
    """Ask the model for every solution approach to a DSA problem."""
    if not request.question or not request.question.strip():
        return JSONResponse(status_code=400, content={"error": "Question is required"})

    try:
        approaches = await pipeline.analyze(request.question)
    except PipelineError as e:
        logging.error(f"Error in /analyze: {e.message}")
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to analyze problem", "details": e.message},
        )

    return AnalyzeResponse(question=request.question, approaches=approaches)


@router.post("/getAnimation", response_model=AnimationResponse)
async def get_animation(request: AnimationRequest, pipeline: RenderPipeline = Depends(get_pipeline)):
    """
    Runs the whole narration -> script -> audio -> render -> mux pipeline
    for one approach and returns the URL of the published video.
    """
    if request.approach is None:
        return JSONResponse(status_code=400, content={"error": "Approach details are required"})

    try:
        result = await pipeline.create_animation(request.approach)
    except PipelineError as e:
        logging.error(f"Error in /getAnimation: {e.message}")
        return JSONResponse(
            status_code=500,
            content={
                "error": e.message,
                "details": type(e).__name__,
                "output": e.output,
                "errorOutput": e.error_output,
            },
        )
    except Exception as e:
        logging.exception("Unexpected error in /getAnimation")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Failed to generate animation with audio",
                "details": str(e),
                "output": "",
                "errorOutput": "",
            },
        )

    return AnimationResponse(videoUrl=result.video_url)
