# tests/conftest.py

import os
import sys
import tempfile

import pytest

# Add the parent directory to the Python path so we can import from it
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
# Keep the module-level app's directories out of the working tree
os.environ.setdefault("DATA_ROOT", tempfile.mkdtemp(prefix="narrator-tests-"))

from pipeline import RenderPipeline
from storage import VideoStore
from fakes import FakeTextGenerator, FakeSpeech, FakeRenderer, FakeMuxer


@pytest.fixture
def dirs(tmp_path):
    paths = {name: str(tmp_path / name) for name in ("renders", "audio", "videos")}
    return paths


@pytest.fixture
def make_pipeline(dirs):
    def _make(text_generator=None, speech=None, renderer=None, muxer=None):
        return RenderPipeline(
            text_generator or FakeTextGenerator(),
            dirs["renders"],
            dirs["audio"],
            VideoStore(dirs["videos"]),
            speech=speech or FakeSpeech(dirs["audio"]),
            renderer=renderer or FakeRenderer(),
            muxer=muxer or FakeMuxer(),
        )
    return _make
