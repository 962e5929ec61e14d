"""
Configuration file for the DSA Animation Narrator backend.
Contains all global constants and prompt engineering templates.
Values are read once from the environment at process start.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_timeout(name: str, default):
    raw = os.getenv(name)
    if raw is None:
        return default
    raw = raw.strip()
    if not raw or raw == "0":
        return None
    try:
        return float(raw)
    except ValueError:
        return default


# --- Server ---
HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "5000"))
API_PREFIX = os.getenv("API_PREFIX", "").rstrip("/")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# --- Text generation provider ---
TEXT_PROVIDER = os.getenv("TEXT_PROVIDER", "gemini").lower()
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
GEMINI_API_URL = os.getenv(
    "GEMINI_API_URL",
    "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent",
)
OLLAMA_API_URL = os.getenv("OLLAMA_API_URL", "http://localhost:11434/api/chat")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "codellama:7b")
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "180"))

# --- Directories ---
PROJECT_ROOT = os.getenv("DATA_ROOT", os.getcwd())
RENDERS_DIR = os.path.join(PROJECT_ROOT, "renders")
AUDIO_DIR = os.path.join(PROJECT_ROOT, "audio")
VIDEOS_DIR = os.path.join(PROJECT_ROOT, "videos")
VIDEOS_URL_PREFIX = "/videos"

# --- External engines ---
SCRIPT_FILENAME = "animation.py"
VIDEO_EXTENSION = ".mp4"
AUDIO_EXTENSION = ".wav"
PUBLISHED_SUFFIX = "_with_audio"
MANIM_QUALITY_FLAG = os.getenv("MANIM_QUALITY_FLAG", "-ql")
FFMPEG_BINARY = os.getenv("FFMPEG_BINARY", "ffmpeg")
TTS_RATE = int(os.getenv("TTS_RATE", "150"))
TTS_VOLUME = float(os.getenv("TTS_VOLUME", "0.8"))

# No limit unless configured, except rendering which keeps a five minute ceiling.
RENDER_TIMEOUT = _env_timeout("RENDER_TIMEOUT", 300.0)
TTS_TIMEOUT = _env_timeout("TTS_TIMEOUT", None)
MUX_TIMEOUT = _env_timeout("MUX_TIMEOUT", None)

# Order in which an approach's code is picked for narration and animation.
CODE_LANGUAGE_PREFERENCE = ["javaCode", "cppCode", "pythonCode", "jsCode"]

# --- Prompt Engineering Section ---

APPROACHES_PROMPT = """You are an expert DSA mentor. For the given DSA problem, provide all possible solution approaches.

Return ONLY a JSON array of objects, with NO markdown formatting, NO explanations, and NO extra text. Each object must have these exact fields:
{{
  "title": string,
  "timeComplexity": string,
  "spaceComplexity": string,
  "description": string,
  "code": {{
    "javaCode": string (Java code),
    "pythonCode": string (Python code),
    "cppCode": string (C++ code),
    "jsCode": string (JavaScript code)
  }},
  "pros": string[],
  "cons": string[],
  "concepts": string[]
}}

Problem:
{question}"""

NARRATION_PROMPT = """You are an expert DSA educator. Generate clear, concise narration steps that explain what's happening in the algorithm visualization.

Create a JSON array of narration steps. Each step should be a short, clear sentence that explains what's happening at that moment in the algorithm execution.

Requirements:
- Each step should be 1-2 sentences maximum
- Use simple, clear language suitable for audio narration
- Focus on the key operations: comparisons, swaps, movements, updates
- Explain the "why" behind each action when relevant
- Keep each step under 150 characters for natural speech flow

Return ONLY a JSON array of strings, no markdown formatting.

Example format:
[
  "We start with an unsorted array of 6 elements",
  "The algorithm compares the first two elements: 5 and 2",
  "Since 5 is greater than 2, we swap their positions",
  "Now we move to the next pair and repeat the comparison"
]

Algorithm code:
{code}"""

ANIMATION_SCRIPT_PROMPT = """You are an expert in the Manim animation library. You generate ONLY Python code for Manim Community Edition.
Generate a clean, error-free Manim script that visually demonstrates the working of the given algorithm using a specific example input.

VERY IMPORTANT RULES:
1.  Your response MUST BE ONLY valid Python code. No explanations or markdown.
2.  Always import required Manim classes at the top: from manim import *
3.  Define exactly one class that inherits from `Scene` and implements construct(self).
4.  Use proper Manim syntax and method names (e.g., Create() not create(), FadeIn() not fade_in()).
5.  All animations must use self.play(); all pauses must use self.wait().
6.  NEVER use `GrowArrow`. Use `Create(Arrow(...))` instead.
7.  Use concrete example data (e.g., array = [3, 7, 1, 9, 2] for sorting algorithms).
8.  Do not include or reference the original code in the video.

VISUAL ELEMENTS GUIDELINES:
- Arrays: Rectangle objects arranged horizontally with Text labels inside
- Pointers/Indices: Arrow objects pointing to array elements, with Text labels (i, j, etc.)
- Variables: Text objects in a dedicated area (top-right corner)
- Comparisons: highlight compared elements with color changes
- Swaps/Moves: Transform or ReplacementTransform animations
- Keep every element within screen bounds, with at least 0.5 units between texts

ANIMATION SYNCHRONIZATION:
- Each animation step should correspond to one narration step, in order
- Use self.wait(2) between major algorithm steps and self.wait(1) for minor transitions

EXAMPLE STRUCTURE:
from manim import *

class AlgorithmDemo(Scene):
    def construct(self):
        # Create visual elements
        # Show initial state
        # Step through algorithm with example
        # Each step: animate + wait

Narration Steps: {narration}

Algorithm Code: {code}

Generate ONLY the Python Manim code with no markdown formatting or explanations."""

# --- Speech driver executed in a separate interpreter ---
SPEECH_DRIVER_TEMPLATE = '''import pyttsx3


def generate_speech(text, output_path):
    engine = pyttsx3.init()
    engine.setProperty("rate", {rate!r})
    engine.setProperty("volume", {volume!r})

    voices = engine.getProperty("voices")
    if voices and len(voices) > 1:
        engine.setProperty("voice", voices[1].id)

    engine.save_to_file(text, output_path)
    engine.runAndWait()
    print("Audio saved to: " + output_path)


if __name__ == "__main__":
    generate_speech({text!r}, {output_path!r})
'''
