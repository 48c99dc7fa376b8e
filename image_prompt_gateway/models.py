"""Request-scoped value types passed between the upload, run and poll steps."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class PromptStyle(str, Enum):
    GENERAL = "general"
    FLUX = "flux"
    MIDJOURNEY = "midjourney"
    STABLE = "stable"

    @property
    def default_query(self) -> str:
        return _DEFAULT_QUERIES[self]


_DEFAULT_QUERIES = {
    PromptStyle.GENERAL: "Generate a detailed prompt for this image",
    PromptStyle.FLUX: "Generate a Flux-optimized prompt for this image",
    PromptStyle.MIDJOURNEY: "Generate a Midjourney-style prompt for this image",
    PromptStyle.STABLE: "Generate a Stable Diffusion prompt for this image",
}


class ExecutionState(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class UploadedAsset:
    """Validated image received from the client."""
    content: bytes
    content_type: str
    size: int
    filename: str


@dataclass
class RemoteFileHandle:
    """File reference returned by the external upload API."""
    file_id: str
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    file_type: Optional[str] = None


@dataclass
class WorkflowInvocation:
    """One workflow-run request and its parsed response envelope."""
    file_id: str
    prompt_style: PromptStyle
    user_query: str
    code: int = -1
    msg: str = ""
    execute_id: Optional[str] = None
    output: Optional[str] = None
    debug_url: Optional[str] = None

    @property
    def has_inline_result(self) -> bool:
        return self.code == 0 and bool(self.output)


@dataclass
class WorkflowStatus:
    """Single status poll result."""
    execute_id: str
    state: ExecutionState
    output: Optional[str] = None
