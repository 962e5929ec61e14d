# tests/test_services.py

import os
import sys
import asyncio

import pytest
import requests
from pydantic import ValidationError

import services
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
from schemas import Approach, ApproachCode, NarrationScript
from services import (
    ManimRunner,
    Muxer,
    NarrationWriter,
    ApproachAnalyzer,
    ProcessResult,
    ScriptSynthesizer,
    SpeechSynthesizer,
    TextGenerator,
    delete_directory,
    find_video_file,
    run_process,
    strip_code_fences,
)
from fakes import FakeTextGenerator, SCENE_SCRIPT


def touch(path):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(b"x")


# --- Fence stripping ---

def test_strip_code_fences_removes_json_fence():
    assert strip_code_fences("```json\n[1,2]\n```") == "[1,2]"


def test_strip_code_fences_removes_python_fence():
    """
    Tests if markdown fences around generated Manim code are removed.
    """
    raw_code = """```python
from manim import *

class MyScene(Scene):
    def construct(self):
        self.play(Write(Text("Hello")))
```"""

    expected_code = """from manim import *

class MyScene(Scene):
    def construct(self):
        self.play(Write(Text("Hello")))"""

    assert strip_code_fences(raw_code) == expected_code


def test_strip_code_fences_leaves_plain_text_alone():
    assert strip_code_fences('  {"a": 1}\n') == '{"a": 1}'


# --- Process supervision ---

def test_run_process_captures_both_streams_and_exit_code():
    cmd = [sys.executable, "-c", "import sys; print('out'); print('err', file=sys.stderr); sys.exit(3)"]
    result = asyncio.run(run_process(cmd))
    assert result.returncode == 3
    assert result.stdout.strip() == "out"
    assert result.stderr.strip() == "err"


def test_run_process_uses_working_directory(tmp_path):
    cmd = [sys.executable, "-c", "import os; print(os.getcwd())"]
    result = asyncio.run(run_process(cmd, cwd=str(tmp_path)))
    assert os.path.samefile(result.stdout.strip(), str(tmp_path))


def test_run_process_reports_spawn_failure():
    with pytest.raises(ProcessSpawnError):
        asyncio.run(run_process(["/nonexistent/definitely-not-a-binary"]))


def test_run_process_kills_process_after_timeout():
    cmd = [sys.executable, "-c", "import time; print('started', flush=True); time.sleep(30)"]
    with pytest.raises(ProcessTimeoutError):
        asyncio.run(run_process(cmd, timeout=0.5))


def test_run_process_kills_child_when_cancelled(tmp_path):
    pid_file = tmp_path / "child.pid"
    cmd = [
        sys.executable,
        "-c",
        f"import os, time; open({str(pid_file)!r}, 'w').write(str(os.getpid())); time.sleep(30)",
    ]

    async def cancel_while_running():
        task = asyncio.create_task(run_process(cmd))
        while not pid_file.exists() or not pid_file.read_text():
            await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(cancel_while_running())

    pid = int(pid_file.read_text())
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)


# --- Artifact location ---

def test_find_video_file_prefers_shallowest_match(tmp_path):
    touch(str(tmp_path / "a" / "b" / "out.mp4"))
    touch(str(tmp_path / "a" / "video.mp4"))
    assert find_video_file(str(tmp_path)) == str(tmp_path / "a" / "video.mp4")


def test_find_video_file_checks_current_level_before_subdirectories(tmp_path):
    touch(str(tmp_path / "aaa" / "deep.mp4"))
    touch(str(tmp_path / "top.mp4"))
    assert find_video_file(str(tmp_path)) == str(tmp_path / "top.mp4")


def test_find_video_file_returns_none_without_match(tmp_path):
    touch(str(tmp_path / "media" / "images" / "frame.png"))
    assert find_video_file(str(tmp_path)) is None
    assert find_video_file(str(tmp_path / "missing")) is None


# --- Filesystem helpers ---

def test_delete_directory_is_idempotent(tmp_path):
    target = tmp_path / "job"
    touch(str(target / "animation.py"))
    assert delete_directory(str(target)) is True
    assert delete_directory(str(target)) is False
    assert delete_directory(None) is False


def test_delete_directory_wraps_os_errors(tmp_path, monkeypatch):
    target = tmp_path / "job"
    target.mkdir()

    def boom(path):
        raise PermissionError("denied")

    monkeypatch.setattr(services.shutil, "rmtree", boom)
    with pytest.raises(CleanupError):
        delete_directory(str(target))


# --- Text generation ---

class _Response:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        return self.payload


def test_text_generator_reads_gemini_candidates(monkeypatch):
    captured = {}

    def fake_post(url, headers=None, json=None, timeout=None):
        captured.update(url=url, headers=headers, json=json)
        return _Response({"candidates": [{"content": {"parts": [{"text": "```json\n"}, {"text": "[1, 2]\n```"}]}}]})

    monkeypatch.setattr(services.requests, "post", fake_post)
    generator = TextGenerator(provider="gemini", api_key="secret", model="gemini-test")

    assert asyncio.run(generator.generate("prompt")) == [1, 2]
    assert "gemini-test" in captured["url"]
    assert captured["headers"] == {"x-goog-api-key": "secret"}
    assert captured["json"]["contents"][0]["parts"][0]["text"] == "prompt"


def test_text_generator_reads_ollama_message(monkeypatch):
    monkeypatch.setattr(
        services.requests, "post",
        lambda url, json=None, timeout=None: _Response({"message": {"content": '{"ok": true}'}}),
    )
    generator = TextGenerator(provider="ollama")
    assert asyncio.run(generator.generate("prompt", expected=dict)) == {"ok": True}


def test_text_generator_wraps_network_failure(monkeypatch):
    def fake_post(*args, **kwargs):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(services.requests, "post", fake_post)
    with pytest.raises(GenerationError):
        asyncio.run(TextGenerator(provider="gemini", api_key="secret").complete("prompt"))


def test_text_generator_wraps_http_error(monkeypatch):
    monkeypatch.setattr(services.requests, "post", lambda *a, **k: _Response({}, status=503))
    with pytest.raises(GenerationError):
        asyncio.run(TextGenerator(provider="gemini", api_key="secret").complete("prompt"))


def test_text_generator_requires_gemini_key():
    with pytest.raises(GenerationError):
        asyncio.run(TextGenerator(provider="gemini", api_key=None).complete("prompt"))


def test_generate_rejects_invalid_json():
    generator = FakeTextGenerator(narration=None)
    generator.replies["DSA educator"] = "Sure! Here are the steps: one, two"
    with pytest.raises(ParseError) as excinfo:
        asyncio.run(generator.generate("DSA educator prompt"))
    assert "Here are the steps" in excinfo.value.output


def test_generate_rejects_wrong_shape():
    generator = FakeTextGenerator()
    with pytest.raises(ParseError):
        asyncio.run(generator.generate("DSA educator prompt", expected=dict))


def test_unknown_provider_is_rejected():
    with pytest.raises(ValueError):
        TextGenerator(provider="carrier-pigeon")


# --- Prompt-driven generators ---

def test_approach_analyzer_validates_approaches():
    approaches = asyncio.run(ApproachAnalyzer(FakeTextGenerator()).analyze("Sort an array"))
    assert len(approaches) == 1
    assert approaches[0].title == "Bubble Sort"
    assert approaches[0].code.primary() == "void sort(int[] a) {}"


def test_approach_analyzer_rejects_approach_without_code():
    generator = FakeTextGenerator(approaches=[{"title": "No code", "code": {}}])
    with pytest.raises(ParseError):
        asyncio.run(ApproachAnalyzer(generator).analyze("Sort an array"))


def test_narration_writer_rejects_empty_narration():
    with pytest.raises(ParseError):
        asyncio.run(NarrationWriter(FakeTextGenerator(narration=[])).generate("code"))


def test_script_synthesizer_returns_fresh_id_and_clean_script():
    generator = FakeTextGenerator()
    synthesizer = ScriptSynthesizer(generator)
    narration = NarrationScript(lines=["Compare 5 and 2", "Swap them"])

    first_id, script = asyncio.run(synthesizer.synthesize("int x;", narration))
    second_id, _ = asyncio.run(synthesizer.synthesize("int x;", narration))

    assert script == SCENE_SCRIPT
    assert first_id != second_id
    assert "Compare 5 and 2" in generator.prompts[-1]
    assert "int x;" in generator.prompts[-1]


def test_script_synthesizer_propagates_generation_error():
    generator = FakeTextGenerator(error=requests.Timeout("slow"))
    with pytest.raises(GenerationError):
        asyncio.run(ScriptSynthesizer(generator).synthesize("code", NarrationScript(lines=["a"])))


# --- Schemas ---

def test_narration_script_strips_markup_and_blank_lines():
    narration = NarrationScript(lines=["**Start** here", "   ", "<break/>Then `swap`"])
    assert narration.lines == ["Start here", "Then swap"]
    assert narration.transcript() == "Start here. Then swap."


def test_narration_script_keeps_comparisons_and_arithmetic():
    lines = [
        "Since 5 < 7 and 9 > 3, we keep both",
        "We compute i * i <= n",
        "Update max_sum",
        "The same loop in C# looks alike",
    ]
    assert NarrationScript(lines=lines).lines == lines


def test_narration_script_strips_ssml_with_attributes():
    narration = NarrationScript(lines=['<prosody rate="slow">Compare a[i] < a[j]</prosody>', "## Step two"])
    assert narration.lines == ["Compare a[i] < a[j]", "Step two"]


def test_narration_script_keeps_existing_terminators():
    assert NarrationScript(lines=["Done!", "Really?"]).transcript() == "Done! Really?"


def test_narration_script_must_not_be_empty():
    with pytest.raises(ValidationError):
        NarrationScript(lines=["", "  "])


def test_approach_code_prefers_java_then_cpp_then_python_then_js():
    code = ApproachCode(pythonCode="py", jsCode="js", cppCode="   ")
    assert code.primary() == "py"
    assert ApproachCode(jsCode="js", javaCode="java").primary() == "java"


def test_approach_requires_some_code():
    with pytest.raises(ValidationError):
        Approach(title="Empty", code={})


# --- Speech synthesis ---

class ScriptedSpeech(SpeechSynthesizer):
    """Runs a tiny driver instead of pyttsx3."""

    def __init__(self, audio_dir, body, **kwargs):
        super().__init__(audio_dir, **kwargs)
        self.body = body

    def build_driver(self, text, output_path):
        return f"import sys\nTEXT = {text!r}\nOUT = {output_path!r}\n{self.body}\n"


def test_speech_synthesizer_returns_existing_file(tmp_path):
    speech = ScriptedSpeech(str(tmp_path), "open(OUT, 'wb').write(TEXT.encode())")
    path = asyncio.run(speech.synthesize(NarrationScript(lines=["One", "Two"]), "job1"))

    assert path == str(tmp_path / "job1.wav")
    with open(path, "rb") as f:
        assert f.read() == b"One. Two."
    assert not os.path.exists(tmp_path / "job1_script.py")


def test_speech_synthesizer_fails_when_no_file_is_written(tmp_path):
    speech = ScriptedSpeech(str(tmp_path), "print('pretending')")
    with pytest.raises(SynthesisError):
        asyncio.run(speech.synthesize(NarrationScript(lines=["One"]), "job2"))
    assert os.listdir(tmp_path) == []


def test_speech_synthesizer_reports_stderr_on_failure(tmp_path):
    speech = ScriptedSpeech(str(tmp_path), "sys.stderr.write('no voices installed'); sys.exit(1)")
    with pytest.raises(SynthesisError) as excinfo:
        asyncio.run(speech.synthesize(NarrationScript(lines=["One"]), "job3"))
    assert "no voices installed" in excinfo.value.error_output
    assert "no voices installed" in excinfo.value.message
    assert not os.path.exists(tmp_path / "job3_script.py")


def test_speech_synthesizer_reports_spawn_failure(tmp_path):
    speech = SpeechSynthesizer(str(tmp_path), python_executable="/nonexistent/python")
    with pytest.raises(ProcessSpawnError):
        asyncio.run(speech.synthesize(NarrationScript(lines=["One"]), "job4"))
    assert not os.path.exists(tmp_path / "job4_script.py")


def test_speech_synthesizer_timeout_is_a_synthesis_error(tmp_path):
    speech = ScriptedSpeech(str(tmp_path), "import time; print('speaking', flush=True); time.sleep(30)", timeout=0.5)
    with pytest.raises(SynthesisError) as excinfo:
        asyncio.run(speech.synthesize(NarrationScript(lines=["One"]), "job5"))
    assert isinstance(excinfo.value.__cause__, ProcessTimeoutError)
    assert "speaking" in excinfo.value.output
    assert not os.path.exists(tmp_path / "job5_script.py")


def test_speech_driver_removed_when_writing_it_fails(tmp_path):
    class BrokenDriver(SpeechSynthesizer):
        def build_driver(self, text, output_path):
            raise RuntimeError("template error")

    with pytest.raises(RuntimeError):
        asyncio.run(BrokenDriver(str(tmp_path)).synthesize(NarrationScript(lines=["One"]), "job6"))
    assert os.listdir(tmp_path) == []


def test_speech_driver_embeds_text_and_settings(tmp_path):
    speech = SpeechSynthesizer(str(tmp_path), rate=120, volume=0.5)
    driver = speech.build_driver('He said "swap" \\ now', "/tmp/out.wav")
    assert "import pyttsx3" in driver
    assert "'He said \"swap\" \\\\ now'" in driver
    assert "120" in driver and "0.5" in driver
    compile(driver, "driver.py", "exec")


# --- Rendering ---

class ScriptedRunner(ManimRunner):
    def __init__(self, body):
        super().__init__()
        self.body = body

    def build_command(self, code):
        return [sys.executable, "-c", self.body]


def test_manim_command_targets_detected_scene():
    command = ManimRunner(python_executable="python").build_command(SCENE_SCRIPT)
    assert command == ["python", "-m", "manim", "animation.py", "AlgorithmDemo", "-ql"]


def test_manim_command_without_scene_class():
    command = ManimRunner(python_executable="python").build_command("print('hi')")
    assert command == ["python", "-m", "manim", "animation.py", "-ql"]


def test_manim_runner_renders_inside_work_dir(tmp_path):
    body = (
        "import os\n"
        "os.makedirs(os.path.join('media', 'videos', 'animation', '480p15'))\n"
        "open(os.path.join('media', 'videos', 'animation', '480p15', 'AlgorithmDemo.mp4'), 'wb').close()\n"
    )
    runner = ScriptedRunner(body)
    result = asyncio.run(runner.render(SCENE_SCRIPT, str(tmp_path)))

    assert result.returncode == 0
    with open(tmp_path / "animation.py", encoding="utf-8") as f:
        assert f.read() == SCENE_SCRIPT
    assert runner.find_video_file(str(tmp_path)) == str(
        tmp_path / "media" / "videos" / "animation" / "480p15" / "AlgorithmDemo.mp4"
    )


def test_manim_runner_keeps_script_already_in_work_dir(tmp_path):
    (tmp_path / "animation.py").write_text("# prepared\n", encoding="utf-8")
    runner = ScriptedRunner("print('rendered')")
    asyncio.run(runner.render(SCENE_SCRIPT, str(tmp_path)))
    assert (tmp_path / "animation.py").read_text(encoding="utf-8") == "# prepared\n"


def test_manim_runner_failure_carries_both_streams(tmp_path):
    runner = ScriptedRunner("import sys; print('Manim Community'); sys.stderr.write('SyntaxError'); sys.exit(1)")
    with pytest.raises(RenderError) as excinfo:
        asyncio.run(runner.render(SCENE_SCRIPT, str(tmp_path)))
    assert "Manim Community" in excinfo.value.output
    assert "SyntaxError" in excinfo.value.error_output


# --- Muxing ---

def test_muxer_command_copies_video_and_keeps_shortest_stream():
    command = Muxer().build_command("in.mp4", "in.wav", "out.mp4")
    assert command[0] == "ffmpeg"
    assert command[command.index("-c:v") + 1] == "copy"
    assert command[command.index("-c:a") + 1] == "aac"
    assert "-shortest" in command
    assert "-y" in command
    assert "out.mp4" in command
    assert command.count("-i") == 2


def test_muxer_raises_on_nonzero_exit(monkeypatch):
    async def fake_run(cmd, cwd=None, timeout=None):
        return ProcessResult(1, "", "Unknown encoder 'aac'")

    monkeypatch.setattr(services, "run_process", fake_run)
    with pytest.raises(MuxError) as excinfo:
        asyncio.run(Muxer().combine("in.mp4", "in.wav", "out.mp4"))
    assert "Unknown encoder" in excinfo.value.error_output


def test_muxer_returns_output_path_on_success(monkeypatch):
    async def fake_run(cmd, cwd=None, timeout=None):
        return ProcessResult(0, "", "")

    monkeypatch.setattr(services, "run_process", fake_run)
    assert asyncio.run(Muxer().combine("in.mp4", "in.wav", "out.mp4")) == "out.mp4"


def test_muxer_reports_missing_binary():
    with pytest.raises(ProcessSpawnError):
        asyncio.run(Muxer(ffmpeg_binary="/nonexistent/ffmpeg").combine("in.mp4", "in.wav", "out.mp4"))
