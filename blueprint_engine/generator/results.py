"""Generation plans and results.

Provides Pydantic v2 models for the concrete work list built from a
blueprint (``GenerationPlan``) and for the ledger of what a run actually did
(``GenerationResult``).  A result is created once per run and handed to the
caller; nothing here is persisted by the engine.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field

from ..errors import BlueprintEngineError
from ..variables import ResolvedVariables


# ---------------------------------------------------------------------------
# Status enumerations
# ---------------------------------------------------------------------------

class GenerationStatus(str, Enum):
    """Terminal state of a generation run."""
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"
    ABORTED = "aborted"


class HookStatus(str, Enum):
    """Outcome of a single hook."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    SKIPPED = "skipped"


# ---------------------------------------------------------------------------
# Ledger entries
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """A failure surfaced to the caller, with the stage and subject it concerns."""

    kind: str = Field(..., description="Error category, e.g. 'validation' or 'render'")
    message: str = Field(..., description="Human-readable message, safe to show verbatim")
    subject: Optional[str] = Field(default=None, description="Variable, file, module, or hook")
    stage: str = Field(default="", description="Stage the error occurred in")

    @classmethod
    def from_exception(cls, exc: BaseException, stage: str) -> "ErrorDetail":
        if isinstance(exc, BlueprintEngineError):
            return cls(kind=exc.kind, message=exc.message, subject=exc.subject, stage=stage)
        return cls(kind="filesystem" if isinstance(exc, OSError) else "internal",
                   message=str(exc) or type(exc).__name__, stage=stage)


class HookOutcome(BaseModel):
    """What happened when a hook ran (or why it did not)."""

    name: str = Field(..., description="Hook display name")
    command: str = Field(default="", description="Command line as executed")
    status: HookStatus = Field(...)
    required: bool = Field(default=False)
    returncode: Optional[int] = Field(default=None)
    stdout: str = Field(default="")
    stderr: str = Field(default="")
    duration_seconds: float = Field(default=0.0, ge=0.0)

    @computed_field  # type: ignore[misc]
    @property
    def succeeded(self) -> bool:
        """True when the hook exited with status zero."""
        return self.status is HookStatus.SUCCEEDED


class MergedDependency(BaseModel):
    """One module after version resolution."""

    module: str = Field(...)
    version: str = Field(default="")
    pinned: bool = Field(default=False)
    declared_versions: list[str] = Field(
        default_factory=list, description="Every distinct version that was declared"
    )


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------

class PlannedFile(BaseModel):
    """An included file entry with its destination already rendered."""

    source: str = Field(...)
    destination: str = Field(..., description="POSIX path relative to the output root")
    executable: bool = Field(default=False)


class PlannedHook(BaseModel):
    """An included hook with its command and working directory rendered."""

    name: str = Field(...)
    argv: Union[str, list[str]] = Field(..., description="Shell string or argument list")
    work_dir: str = Field(default="", description="POSIX path relative to the output root")
    required: bool = Field(default=False)
    timeout: Optional[int] = Field(default=None)
    env: dict[str, str] = Field(default_factory=dict)

    @property
    def display_command(self) -> str:
        return self.argv if isinstance(self.argv, str) else " ".join(self.argv)


class GenerationPlan(BaseModel):
    """The ordered work list for one run, built without touching the filesystem."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    blueprint_id: str = Field(...)
    output_dir: Path = Field(...)
    variables: ResolvedVariables = Field(...)
    files: list[PlannedFile] = Field(default_factory=list)
    dependencies: list[MergedDependency] = Field(default_factory=list)
    hooks: list[PlannedHook] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

class GenerationResult(BaseModel):
    """Full ledger of one generation run."""

    blueprint_id: str = Field(...)
    output_dir: str = Field(...)
    status: GenerationStatus = Field(...)
    dry_run: bool = Field(default=False)
    files_planned: list[str] = Field(default_factory=list)
    files_written: list[str] = Field(
        default_factory=list, description="Destinations relative to the output root"
    )
    dependencies: list[MergedDependency] = Field(default_factory=list)
    hooks: list[HookOutcome] = Field(default_factory=list)
    errors: list[ErrorDetail] = Field(default_factory=list)
    variables: dict[str, Any] = Field(default_factory=dict)
    started_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    duration_seconds: float = Field(default=0.0, ge=0.0)

    @computed_field  # type: ignore[misc]
    @property
    def success(self) -> bool:
        """True when the run reached ``completed``."""
        return self.status is GenerationStatus.COMPLETED

    def errors_of_kind(self, kind: str) -> list[ErrorDetail]:
        """Return recorded errors whose ``kind`` equals *kind*."""
        return [e for e in self.errors if e.kind == kind]

    def hook(self, name: str) -> HookOutcome:
        for outcome in self.hooks:
            if outcome.name == name:
                return outcome
        raise KeyError(name)
