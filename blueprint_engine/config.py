"""Blueprint engine configuration.

Typed tuning knobs for a generation run.  Settings use a Pydantic v2 model so
they are validated at construction time and can be built from environment
variables without boiler-plate.
"""

from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, Field


_TRUE_STRINGS = frozenset({"1", "true", "yes", "on"})


def _env_flag(name: str) -> bool | None:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip().lower() in _TRUE_STRINGS


class EngineConfig(BaseModel):
    """Configuration shared by every stage of a generation run.

    Instances are created once by the caller (CLI, web handler, test) and
    passed to ``GenerationOrchestrator``.  A config holds no per-run state, so
    one instance may back several concurrent orchestrators.
    """

    hook_timeout: int = Field(
        default=120, ge=1, description="Default per-hook timeout in seconds"
    )
    max_render_workers: int = Field(
        default=8, ge=1, description="Maximum concurrent file renders in the Stage step"
    )
    force: bool = Field(
        default=False,
        description="Allow generating into a non-empty output directory (files are overwritten)",
    )
    run_hooks: bool = Field(default=True, description="Execute post-generation hooks")
    dry_run: bool = Field(
        default=False, description="Stop after planning; report what would be written"
    )
    verbose: bool = Field(default=False, description="Print stage progress to the console")
    staging_prefix: str = Field(
        default=".blueprint-staging-",
        min_length=1,
        description="Prefix of the private staging directory created beside the output",
    )

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Build an ``EngineConfig`` from environment variables.

        Recognised variables (all optional):
            BLUEPRINT_HOOK_TIMEOUT, BLUEPRINT_MAX_RENDER_WORKERS,
            BLUEPRINT_FORCE, BLUEPRINT_RUN_HOOKS, BLUEPRINT_DRY_RUN,
            BLUEPRINT_VERBOSE.
        """
        kwargs: dict[str, Any] = {}
        if os.environ.get("BLUEPRINT_HOOK_TIMEOUT"):
            kwargs["hook_timeout"] = int(os.environ["BLUEPRINT_HOOK_TIMEOUT"])
        if os.environ.get("BLUEPRINT_MAX_RENDER_WORKERS"):
            kwargs["max_render_workers"] = int(os.environ["BLUEPRINT_MAX_RENDER_WORKERS"])

        for field_name, env_name in (
            ("force", "BLUEPRINT_FORCE"),
            ("run_hooks", "BLUEPRINT_RUN_HOOKS"),
            ("dry_run", "BLUEPRINT_DRY_RUN"),
            ("verbose", "BLUEPRINT_VERBOSE"),
        ):
            flag = _env_flag(env_name)
            if flag is not None:
                kwargs[field_name] = flag

        return cls(**kwargs)
