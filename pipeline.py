"""
Render pipeline coordinator.

Takes one approach through narration, script synthesis, speech synthesis,
rendering and muxing. Each request gets a fresh job ID that names its
working directory, audio file and published directory, so concurrent jobs
never touch each other's files. Whatever happens, the working directory and
audio file are gone by the time create_animation returns or raises.
"""

import os
import asyncio
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import List, Optional

from exceptions import ArtifactNotFoundError, CleanupError
from schemas import Approach, NarrationScript
from services import (
    TextGenerator,
    ApproachAnalyzer,
    NarrationWriter,
    ScriptSynthesizer,
    SpeechSynthesizer,
    ManimRunner,
    Muxer,
    delete_directory,
    delete_file,
)
from storage import VideoStore
from config import PUBLISHED_SUFFIX


class JobState(str, Enum):
    IDLE = "idle"
    NARRATION_GENERATED = "narration_generated"
    SCRIPT_GENERATED = "script_generated"
    DIRECTORY_PREPARED = "directory_prepared"
    AUDIO_SYNTHESIZED = "audio_synthesized"
    RENDERING = "rendering"
    ARTIFACT_LOCATED = "artifact_located"
    PUBLISHED = "published"
    CLEANED = "cleaned"
    FAILED = "failed"


@dataclass
class RenderJob:
    """State of one animation request. Lives only as long as the request."""
    render_id: Optional[str] = None
    narration: Optional[NarrationScript] = None
    script: Optional[str] = None
    work_dir: Optional[str] = None
    audio_path: Optional[str] = None
    video_path: Optional[str] = None
    publish_dir: Optional[str] = None
    published_path: Optional[str] = None
    video_url: Optional[str] = None
    state: JobState = JobState.IDLE
    history: List[JobState] = field(default_factory=lambda: [JobState.IDLE])

    def advance(self, state: JobState):
        self.state = state
        self.history.append(state)
        logging.info(f"Job {self.render_id or '-'}: {state.value}")


@dataclass
class RenderResult:
    render_id: str
    video_url: str
    published_path: str


class RenderPipeline:
    """Sequences the animation stages and owns every job's temporary files."""

    def __init__(
        self,
        text_generator: TextGenerator,
        renders_dir: str,
        audio_dir: str,
        video_store: VideoStore,
        speech: Optional[SpeechSynthesizer] = None,
        renderer: Optional[ManimRunner] = None,
        muxer: Optional[Muxer] = None,
    ):
        self.renders_dir = renders_dir
        self.audio_dir = audio_dir
        self.video_store = video_store
        os.makedirs(self.renders_dir, exist_ok=True)
        os.makedirs(self.audio_dir, exist_ok=True)

        self.analyzer = ApproachAnalyzer(text_generator)
        self.narrator = NarrationWriter(text_generator)
        self.script_synthesizer = ScriptSynthesizer(text_generator)
        self.speech = speech or SpeechSynthesizer(audio_dir)
        self.renderer = renderer or ManimRunner()
        self.muxer = muxer or Muxer()

    async def analyze(self, question: str) -> List[Approach]:
        return await self.analyzer.analyze(question)

    async def create_animation(self, approach: Approach, job: Optional[RenderJob] = None) -> RenderResult:
        """Run every stage for `approach`; raises the first stage's PipelineError on failure."""
        job = job or RenderJob()
        logging.info(f"Generating animation with audio for approach: {approach.title}")
        code = approach.code.primary()

        try:
            job.narration = await self.narrator.generate(code)
            job.advance(JobState.NARRATION_GENERATED)

            job.render_id, job.script = await self.script_synthesizer.synthesize(code, job.narration)
            job.advance(JobState.SCRIPT_GENERATED)

            job.work_dir = os.path.join(self.renders_dir, job.render_id)
            os.makedirs(job.work_dir)
            self.renderer.write_script(job.script, job.work_dir)
            job.advance(JobState.DIRECTORY_PREPARED)

            # Claimed before synthesis so a half-written file is still cleaned up.
            job.audio_path = self.speech.audio_path_for(job.render_id)
            job.audio_path = await self.speech.synthesize(job.narration, job.render_id)
            job.advance(JobState.AUDIO_SYNTHESIZED)

            job.advance(JobState.RENDERING)
            render_result = await self.renderer.render(job.script, job.work_dir)
            job.video_path = self.renderer.find_video_file(job.work_dir)
            if not job.video_path:
                logging.error(f"No video file found in render directory: {job.work_dir}")
                raise ArtifactNotFoundError(
                    "No video file generated",
                    output=render_result.stdout,
                    error_output=render_result.stderr,
                )
            job.advance(JobState.ARTIFACT_LOCATED)
            logging.info(f"Found video file at: {job.video_path}")

            job.publish_dir = self.video_store.prepare(job.render_id)
            base_name = os.path.splitext(os.path.basename(job.video_path))[0]
            final_name = f"{base_name}{PUBLISHED_SUFFIX}{os.path.splitext(job.video_path)[1]}"
            job.published_path = await self.muxer.combine(
                job.video_path, job.audio_path, os.path.join(job.publish_dir, final_name)
            )
            job.video_url = self.video_store.url_for(job.render_id, final_name)
            job.advance(JobState.PUBLISHED)
        except BaseException:
            job.advance(JobState.FAILED)
            raise
        finally:
            await self.cleanup(job)

        job.advance(JobState.CLEANED)
        logging.info(f"Video with audio successfully generated and available at: {job.video_url}")
        return RenderResult(job.render_id, job.video_url, job.published_path)

    async def cleanup(self, job: RenderJob):
        """
        Remove a job's working directory and audio file. A failed job also
        loses its half-written published directory. Safe to call repeatedly;
        errors are logged, never raised.
        """
        targets = [(delete_directory, job.work_dir), (delete_file, job.audio_path)]
        if job.state == JobState.FAILED:
            targets.append((delete_directory, job.publish_dir))

        for remove, path in targets:
            try:
                await asyncio.to_thread(remove, path)
            except CleanupError as e:
                logging.error(str(e))
        logging.info(f"Cleaned up temporary files for job {job.render_id or '-'}")
