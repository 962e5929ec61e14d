"""
Error taxonomy for the animation pipeline.

Every stage failure is a PipelineError carrying whatever the failing
external process printed, so the HTTP layer can hand it back to operators.
"""


class PipelineError(Exception):
    """Base exception for all pipeline stage failures."""

    def __init__(self, message: str, output: str = "", error_output: str = ""):
        super().__init__(message)
        self.message = message
        self.output = output or ""
        self.error_output = error_output or ""


class GenerationError(PipelineError):
    """The text generation provider could not be reached or refused the request."""


class ParseError(PipelineError):
    """The provider answered, but not with the structured data we asked for."""


class ProcessSpawnError(PipelineError):
    """An external process could not be started at all."""


class ProcessTimeoutError(PipelineError):
    """An external process outlived its configured timeout and was killed."""


class SynthesisError(PipelineError):
    """Speech engine exited non-zero or did not produce the audio file."""


class RenderError(PipelineError):
    """Animation engine exited non-zero."""


class ArtifactNotFoundError(PipelineError):
    """Rendering succeeded but no video file could be located."""


class MuxError(PipelineError):
    """Combining audio and video failed."""


class CleanupError(Exception):
    """Raised by cleanup helpers; always logged and swallowed, never surfaced."""
