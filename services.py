"""
Service classes for the DSA Animation Narrator.
Contains the text generation client, the prompt-driven generators, and the
runners for the external speech, animation and muxing engines.
"""

import os
import re
import sys
import json
import uuid
import shutil
import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import ffmpeg
import requests
from pydantic import TypeAdapter, ValidationError

from config import (
    TEXT_PROVIDER,
    GEMINI_API_KEY,
    GEMINI_MODEL,
    GEMINI_API_URL,
    OLLAMA_API_URL,
    OLLAMA_MODEL,
    LLM_TIMEOUT,
    SCRIPT_FILENAME,
    VIDEO_EXTENSION,
    AUDIO_EXTENSION,
    MANIM_QUALITY_FLAG,
    FFMPEG_BINARY,
    TTS_RATE,
    TTS_VOLUME,
    RENDER_TIMEOUT,
    TTS_TIMEOUT,
    MUX_TIMEOUT,
    APPROACHES_PROMPT,
    NARRATION_PROMPT,
    ANIMATION_SCRIPT_PROMPT,
    SPEECH_DRIVER_TEMPLATE,
)
from exceptions import (
    GenerationError,
    ParseError,
    ProcessSpawnError,
    ProcessTimeoutError,
    SynthesisError,
    RenderError,
    MuxError,
    CleanupError,
)
from schemas import Approach, NarrationScript


# --------------------------------------------------------------------------
# --- Process supervision ---
# --------------------------------------------------------------------------

@dataclass
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str


def _decode(data: Optional[bytes]) -> str:
    return data.decode("utf-8", errors="replace") if data else ""


async def run_process(cmd: List[str], cwd: Optional[str] = None, timeout: Optional[float] = None) -> ProcessResult:
    """
    Run an external process to completion without blocking the event loop.

    Returns the exit code with both captured streams. Raises ProcessSpawnError
    when the process cannot be started and ProcessTimeoutError when it is
    still running after `timeout` seconds (it is killed first).
    """
    logging.info(f"Running command: {' '.join(cmd)}" + (f" (cwd={cwd})" if cwd else ""))
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        logging.error(f"Failed to start {cmd[0]}: {e}")
        raise ProcessSpawnError(f"Failed to start {cmd[0]}: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        stdout, stderr = await process.communicate()
        logging.error(f"{cmd[0]} timed out after {timeout}s and was killed.")
        raise ProcessTimeoutError(
            f"{cmd[0]} timed out after {timeout} seconds",
            output=_decode(stdout),
            error_output=_decode(stderr),
        )
    except asyncio.CancelledError:
        if process.returncode is None:
            process.kill()
            await process.wait()
        raise

    return ProcessResult(process.returncode, _decode(stdout), _decode(stderr))


# --------------------------------------------------------------------------
# --- Filesystem helpers ---
# --------------------------------------------------------------------------

def delete_directory(path: Optional[str]) -> bool:
    """Remove a directory tree if present. Returns True when something was removed."""
    if not path or not os.path.exists(path):
        return False
    try:
        shutil.rmtree(path)
    except OSError as e:
        raise CleanupError(f"Error deleting directory {path}: {e}") from e
    logging.info(f"Successfully deleted directory: {path}")
    return True


def delete_file(path: Optional[str]) -> bool:
    """Remove a single file if present. Returns True when it was removed."""
    if not path or not os.path.exists(path):
        return False
    try:
        os.remove(path)
    except OSError as e:
        raise CleanupError(f"Error deleting file {path}: {e}") from e
    return True


def find_video_file(directory: str, extension: str = VIDEO_EXTENSION) -> Optional[str]:
    """
    Depth-first search for a rendered video under `directory`.

    Files at the current level win over anything deeper; subdirectories are
    visited in name order. Returns None when nothing matches.
    """
    try:
        entries = sorted(os.scandir(directory), key=lambda entry: entry.name)
    except FileNotFoundError:
        return None
    except OSError as e:
        logging.error(f"Error finding video file in {directory}: {e}")
        return None

    for entry in entries:
        if entry.is_file() and entry.name.endswith(extension):
            return entry.path

    for entry in entries:
        if entry.is_dir(follow_symlinks=False):
            found = find_video_file(entry.path, extension)
            if found:
                return found

    return None


# --------------------------------------------------------------------------
# --- Text generation ---
# --------------------------------------------------------------------------

_FENCE_RE = re.compile(r"```[\w+-]*\n?")


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences (```json, ```python, plain ```) and trim."""
    return _FENCE_RE.sub("", text or "").strip()


class TextGenerator:
    """Handles AI model communication: prompt in, text or parsed JSON out."""

    def __init__(
        self,
        provider: str = TEXT_PROVIDER,
        api_key: Optional[str] = GEMINI_API_KEY,
        model: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: float = LLM_TIMEOUT,
    ):
        if provider not in ("gemini", "ollama"):
            raise ValueError(f"Unknown text provider: {provider}")
        self.provider = provider
        self.api_key = api_key
        if provider == "gemini":
            self.model = model or GEMINI_MODEL
            self.api_url = api_url or GEMINI_API_URL
        else:
            self.model = model or OLLAMA_MODEL
            self.api_url = api_url or OLLAMA_API_URL
        self.timeout = timeout

    def _call_gemini(self, prompt: str) -> str:
        if not self.api_key:
            raise GenerationError("GEMINI_API_KEY is not configured.")
        payload = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        response = requests.post(
            self.api_url.format(model=self.model),
            headers={"x-goog-api-key": self.api_key},
            json=payload,
            timeout=self.timeout,
        )
        response.raise_for_status()
        data = response.json()
        try:
            parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError):
            raise GenerationError("Gemini returned no candidates.", output=json.dumps(data)[:2000])
        return "".join(part.get("text", "") for part in parts)

    def _call_ollama(self, prompt: str) -> str:
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "stream": False,
            "options": {"temperature": 0.2, "top_p": 0.95},
        }
        response = requests.post(self.api_url, json=payload, timeout=self.timeout)
        response.raise_for_status()
        return response.json().get("message", {}).get("content", "")

    def _call(self, prompt: str) -> str:
        try:
            if self.provider == "gemini":
                return self._call_gemini(prompt)
            return self._call_ollama(prompt)
        except requests.RequestException as e:
            raise GenerationError(f"Could not reach the {self.provider} model: {e}") from e
        except ValueError as e:
            # requests raises a ValueError subclass for undecodable JSON bodies
            raise GenerationError(f"The {self.provider} model sent an unreadable response: {e}") from e

    async def complete(self, prompt: str) -> str:
        """Send a prompt and return the raw text answer."""
        logging.info(f"📝 Sending prompt to {self.model} ({len(prompt)} chars)")
        return await asyncio.to_thread(self._call, prompt)

    async def generate(self, prompt: str, expected: type = list):
        """Send a prompt and parse the answer as JSON of the `expected` shape (list or dict)."""
        raw = await self.complete(prompt)
        cleaned = strip_code_fences(raw)
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as e:
            logging.error(f"Model output is not valid JSON: {e}")
            raise ParseError(f"Model output is not valid JSON: {e}", output=raw) from e
        if not isinstance(data, expected):
            raise ParseError(
                f"Expected a JSON {expected.__name__}, got {type(data).__name__}",
                output=raw,
            )
        return data


_APPROACH_LIST = TypeAdapter(List[Approach])


class ApproachAnalyzer:
    """Turns a problem statement into a list of validated approaches."""

    def __init__(self, text_generator: TextGenerator):
        self.text_generator = text_generator

    async def analyze(self, question: str) -> List[Approach]:
        logging.info(f"Analyzing question: {question[:100]}")
        data = await self.text_generator.generate(APPROACHES_PROMPT.format(question=question), expected=list)
        try:
            approaches = _APPROACH_LIST.validate_python(data)
        except ValidationError as e:
            raise ParseError(f"Approaches did not match the expected schema: {e}", output=json.dumps(data)[:2000]) from e
        logging.info(f"Generated {len(approaches)} approaches")
        return approaches


class NarrationWriter:
    """Writes the spoken narration for an algorithm's source code."""

    def __init__(self, text_generator: TextGenerator):
        self.text_generator = text_generator

    async def generate(self, source_code: str) -> NarrationScript:
        data = await self.text_generator.generate(NARRATION_PROMPT.format(code=source_code), expected=list)
        try:
            narration = NarrationScript(lines=data)
        except ValidationError as e:
            raise ParseError(f"Narration did not match the expected schema: {e}", output=json.dumps(data)[:2000]) from e
        logging.info(f"Generated {len(narration.lines)} narration steps")
        return narration


class ScriptSynthesizer:
    """Asks the model for a Manim script that follows the narration."""

    def __init__(self, text_generator: TextGenerator):
        self.text_generator = text_generator

    async def synthesize(self, source_code: str, narration: NarrationScript) -> Tuple[str, str]:
        # Minted before the model call so a failure here never wastes one.
        script_id = str(uuid.uuid4())
        prompt = ANIMATION_SCRIPT_PROMPT.format(narration=json.dumps(narration.lines), code=source_code)
        raw = await self.text_generator.complete(prompt)
        script = strip_code_fences(raw)
        if not script:
            raise ParseError("AI returned an empty animation script.", output=raw)
        return script_id, script


# --------------------------------------------------------------------------
# --- External engines ---
# --------------------------------------------------------------------------

class SpeechSynthesizer:
    """Produces one narration audio file per job through a pyttsx3 driver process."""

    def __init__(
        self,
        audio_dir: str,
        python_executable: str = sys.executable,
        rate: int = TTS_RATE,
        volume: float = TTS_VOLUME,
        timeout: Optional[float] = TTS_TIMEOUT,
        extension: str = AUDIO_EXTENSION,
    ):
        self.audio_dir = audio_dir
        self.python_executable = python_executable
        self.rate = rate
        self.volume = volume
        self.timeout = timeout
        self.extension = extension

    def audio_path_for(self, job_id: str) -> str:
        return os.path.join(self.audio_dir, f"{job_id}{self.extension}")

    def build_driver(self, text: str, output_path: str) -> str:
        return SPEECH_DRIVER_TEMPLATE.format(rate=self.rate, volume=self.volume, text=text, output_path=output_path)

    async def synthesize(self, narration: NarrationScript, job_id: str) -> str:
        audio_path = self.audio_path_for(job_id)
        transcript = narration.transcript()
        logging.info(f"Generating audio for narration: {transcript[:100]}...")

        driver_path = os.path.join(self.audio_dir, f"{job_id}_script.py")
        try:
            with open(driver_path, "w", encoding="utf-8") as f:
                f.write(self.build_driver(transcript, audio_path))
            result = await run_process([self.python_executable, driver_path], timeout=self.timeout)
        except ProcessTimeoutError as e:
            logging.error(f"Audio generation timed out: {e.error_output}")
            raise SynthesisError(
                f"Audio generation failed: {e.message}",
                output=e.output,
                error_output=e.error_output,
            ) from e
        finally:
            try:
                delete_file(driver_path)
            except CleanupError as e:
                logging.warning(f"Error cleaning up script file: {e}")

        if result.returncode == 0 and os.path.exists(audio_path):
            logging.info("Audio generated successfully")
            return audio_path

        logging.error(f"Audio generation failed: {result.stderr}")
        raise SynthesisError(
            f"Audio generation failed: {result.stderr.strip() or f'exit code {result.returncode}, no audio file'}",
            output=result.stdout,
            error_output=result.stderr,
        )


class ManimRunner:
    """Handles the execution of Manim animations inside a job's working directory."""

    def __init__(
        self,
        python_executable: str = sys.executable,
        quality_flag: str = MANIM_QUALITY_FLAG,
        timeout: Optional[float] = RENDER_TIMEOUT,
        script_filename: str = SCRIPT_FILENAME,
        video_extension: str = VIDEO_EXTENSION,
    ):
        self.python_executable = python_executable
        self.quality_flag = quality_flag
        self.timeout = timeout
        self.script_filename = script_filename
        self.video_extension = video_extension

    @staticmethod
    def _detect_scene_name(code: str) -> Optional[str]:
        match = re.search(r"class\s+(\w+)\s*\(\s*\w*Scene\s*\):", code)
        return match.group(1) if match else None

    def write_script(self, code: str, work_dir: str) -> str:
        script_path = os.path.join(work_dir, self.script_filename)
        with open(script_path, "w", encoding="utf-8") as f:
            f.write(code)
        return script_path

    def build_command(self, code: str) -> List[str]:
        command = [self.python_executable, "-m", "manim", self.script_filename]
        scene_name = self._detect_scene_name(code)
        if scene_name:
            command.append(scene_name)
        command.append(self.quality_flag)
        return command

    async def render(self, code: str, work_dir: str) -> ProcessResult:
        if not os.path.exists(os.path.join(work_dir, self.script_filename)):
            self.write_script(code, work_dir)
        command = self.build_command(code)
        logging.info(f"🎬 Running Manim in directory: {work_dir}")

        result = await run_process(command, cwd=work_dir, timeout=self.timeout)
        logging.info(f"Manim process exited with code {result.returncode}")

        if result.returncode != 0:
            logging.error(f"Manim failed with output: {result.stdout}")
            logging.error(f"Manim failed with error: {result.stderr}")
            raise RenderError(
                f"Manim failed with code {result.returncode}",
                output=result.stdout,
                error_output=result.stderr,
            )
        return result

    def find_video_file(self, work_dir: str) -> Optional[str]:
        return find_video_file(work_dir, self.video_extension)


class Muxer:
    """Merges the silent animation with its narration, keeping the video stream as is."""

    def __init__(self, ffmpeg_binary: str = FFMPEG_BINARY, timeout: Optional[float] = MUX_TIMEOUT):
        self.ffmpeg_binary = ffmpeg_binary
        self.timeout = timeout

    def build_command(self, video_path: str, audio_path: str, output_path: str) -> List[str]:
        video = ffmpeg.input(video_path)
        audio = ffmpeg.input(audio_path)
        stream = ffmpeg.output(
            video.video,
            audio.audio,
            output_path,
            shortest=None,
            **{"c:v": "copy", "c:a": "aac"},
        ).overwrite_output()
        return stream.compile(cmd=self.ffmpeg_binary)

    async def combine(self, video_path: str, audio_path: str, output_path: str) -> str:
        result = await run_process(self.build_command(video_path, audio_path, output_path), timeout=self.timeout)
        if result.returncode != 0:
            logging.error(f"FFmpeg failed: {result.stderr}")
            raise MuxError(
                f"FFmpeg failed with code {result.returncode}",
                output=result.stdout,
                error_output=result.stderr,
            )
        logging.info("Video and audio combined successfully")
        return output_path
