"""
Pydantic models for data validation in the DSA Animation Narrator.
"""

import re
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from config import CODE_LANGUAGE_PREFERENCE


class ApproachCode(BaseModel):
    """Source code of one approach, keyed by language."""
    javaCode: Optional[str] = None
    pythonCode: Optional[str] = None
    cppCode: Optional[str] = None
    jsCode: Optional[str] = None

    @model_validator(mode="after")
    def _require_one_language(self):
        if not any((getattr(self, key) or "").strip() for key in CODE_LANGUAGE_PREFERENCE):
            raise ValueError("approach code must contain at least one language")
        return self

    def primary(self) -> str:
        """First non-empty source in Java, C++, Python, JavaScript order."""
        for key in CODE_LANGUAGE_PREFERENCE:
            value = getattr(self, key)
            if value and value.strip():
                return value
        return ""


class Approach(BaseModel):
    """One candidate solution to a DSA problem."""
    title: str = ""
    timeComplexity: str = ""
    spaceComplexity: str = ""
    description: str = ""
    code: ApproachCode
    pros: List[str] = Field(default_factory=list)
    cons: List[str] = Field(default_factory=list)
    concepts: List[str] = Field(default_factory=list)

    model_config = {"frozen": True}


# Only well-formed SSML/HTML tags and paired markdown emphasis count as markup;
# bare <, >, *, _ and # are narration text ("5 < 7", "i * i", "max_sum", "C#").
_TAG_RE = re.compile(
    r"</?(?:speak|break|emphasis|prosody|say-as|sub|phoneme|voice|mark|lang|p|s|b|i|u|em|strong|code|span|br)"
    r"(?:\s+[\w:-]+\s*=\s*(?:\"[^\"]*\"|'[^']*'))*\s*/?>",
    re.IGNORECASE,
)
_EMPHASIS_RE = re.compile(r"\*\*(.+?)\*\*|`([^`]+)`")
_HEADING_RE = re.compile(r"^#{1,6}\s+")


def _strip_markup(text: str) -> str:
    text = _TAG_RE.sub("", text)
    text = _EMPHASIS_RE.sub(lambda m: m.group(1) if m.group(1) is not None else m.group(2), text)
    return _HEADING_RE.sub("", text.strip())


class NarrationScript(BaseModel):
    """Ordered narration lines; each line is one spoken beat."""
    lines: List[str]

    @field_validator("lines")
    @classmethod
    def _plain_non_empty(cls, lines):
        cleaned = []
        for line in lines:
            text = _strip_markup(str(line))
            text = " ".join(text.split())
            if text:
                cleaned.append(text)
        if not cleaned:
            raise ValueError("narration must contain at least one line")
        return cleaned

    def transcript(self) -> str:
        """Join lines into one transcript with a sentence terminator after each line."""
        sentences = []
        for line in self.lines:
            sentences.append(line if line[-1] in ".!?" else line + ".")
        return " ".join(sentences)


class AnalyzeRequest(BaseModel):
    """Request model for analyzing a DSA problem."""
    question: Optional[str] = None


class AnalyzeResponse(BaseModel):
    """Response model listing the solution approaches."""
    question: str
    title: str = "Problem Analysis"
    approaches: List[Approach]


class AnimationRequest(BaseModel):
    """Request model for rendering a narrated animation of one approach."""
    approach: Optional[Approach] = None


class AnimationResponse(BaseModel):
    """Response model pointing at the published video."""
    videoUrl: str


class CleanupResponse(BaseModel):
    """Response for cleanup operations."""
    message: str
    count: Optional[int] = None
