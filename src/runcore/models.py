"""Pydantic models for request and response bodies and stream frames.

These models express the structure expected by the HTTP API.  Field names
are snake_case in Python and camelCase on the wire, matching what the
browser client sends and reads.

Output frames form a closed tagged union on the ``type`` field.  Messages
are validated when constructed by the shell and again when parsed back from
the event stream by :func:`parse_frame`.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Output frames


class StdoutMessage(_WireModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["stdout"] = "stdout"
    content: str


class StderrMessage(_WireModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["stderr"] = "stderr"
    content: str


class ExitFrame(_WireModel):
    """Sent once to live subscribers when their session is torn down."""

    model_config = ConfigDict(frozen=True)

    type: Literal["exit"] = "exit"
    exit_code: Optional[int] = None


OutputMessage = Annotated[Union[StdoutMessage, StderrMessage], Field(discriminator="type")]
Frame = Annotated[Union[StdoutMessage, StderrMessage, ExitFrame], Field(discriminator="type")]

_FRAME_ADAPTER: TypeAdapter = TypeAdapter(Frame)


def stdout_message(content: str) -> StdoutMessage:
    return StdoutMessage(content=content)


def stderr_message(content: str) -> StderrMessage:
    return StderrMessage(content=content)


def encode_frame(frame: Union[StdoutMessage, StderrMessage, ExitFrame]) -> str:
    """Render a frame as a single ``data:`` event."""
    payload = frame.model_dump_json(by_alias=True)
    return f"data: {payload}\n\n"


def parse_frame(text: str) -> Union[StdoutMessage, StderrMessage, ExitFrame]:
    """Parse one ``data:`` event back into a frame.

    Raises ``ValueError`` for comment frames, malformed events and payloads
    whose ``type`` is outside the union.
    """
    line = text.strip()
    if not line.startswith("data:"):
        raise ValueError(f"Not a data frame: {text!r}")
    payload = line[len("data:"):].strip()
    try:
        return _FRAME_ADAPTER.validate_python(json.loads(payload))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Malformed frame payload: {exc}") from exc


# ---------------------------------------------------------------------------
# Shell endpoints


class SpawnRequest(_WireModel):
    """Request body for opening a shell session."""

    cwd: Optional[str] = Field(
        default=None,
        description="Initial working directory. Uses the workspace root if omitted.",
    )


class SpawnResponse(_WireModel):
    session_id: str
    shell: str
    cwd: str


class InputRequest(_WireModel):
    input: str = Field(..., description="One line of shell input.")


class SuccessResponse(_WireModel):
    success: bool = True


class SessionSummary(_WireModel):
    session_id: str
    cwd: str
    busy: bool
    subscribers: int
    created_at: datetime


class SessionListResponse(_WireModel):
    sessions: List[SessionSummary] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# One-shot execution endpoints


class FileSpec(_WireModel):
    name: str
    content: str


class ExecuteRequest(_WireModel):
    """Request body for running a single program."""

    code: str = Field(..., description="Source code of the main file.")
    filename: str = Field(..., description="Main file name; its extension selects the language.")
    additional_files: List[FileSpec] = Field(
        default_factory=list,
        description="Auxiliary files (data the program reads), relative to the main file.",
    )


class ExecuteResponse(_WireModel):
    """Response body for code execution."""

    stdout: str
    stderr: str
    exit_code: int
    execution_time: int
    language: str


class CompilerInfo(_WireModel):
    name: str
    version: str
    extensions: List[str]


class SupportedLanguage(_WireModel):
    name: str
    extensions: List[str]
    installed: bool


class CompilersResponse(_WireModel):
    available: List[CompilerInfo] = Field(default_factory=list)
    supported: List[SupportedLanguage] = Field(default_factory=list)
