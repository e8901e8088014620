"""Post-generation hook execution.

Hooks are external commands (``go mod tidy``, ``git init``, formatters) run
inside the freshly committed project.  Each hook runs with a timeout through
:func:`blueprint_engine.utils.run_command`; a hook that cannot start, exits
non-zero, or times out produces a ``HookOutcome`` rather than an exception.

Command templates are split into words *before* rendering, so a variable
value always lands inside a single argument.  Hooks that need the shell
(``shell: true``, or a glob written literally in the template) are rendered
with every substituted value shell-quoted.
"""

from __future__ import annotations

import re
import shlex
import time
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from ..renderer import TemplateRenderer
from ..utils import run_command
from .results import HookOutcome, HookStatus, PlannedHook

# Characters that only make sense when the shell expands them.
_GLOB_CHARS = frozenset("*?[")

_TAG_RE = re.compile(r"\{\{.*?\}\}|\{%.*?%\}|\{#.*?#\}", re.DOTALL)
_PLACEHOLDER_RE = re.compile(r"\x00(\d+)\x00")


def uses_shell(command: str, args: Sequence[str] = (), shell: bool = False) -> bool:
    """Decide from the unrendered template whether a hook needs the shell.

    Only glob characters written by the blueprint author count; anything a
    variable substitutes is never interpreted by the shell.
    """
    if shell:
        return True
    if args:
        return False
    literal = _TAG_RE.sub("", command)
    return any(ch in _GLOB_CHARS for ch in literal)


def split_template(command: str) -> list[str]:
    """Shell-split a command template while keeping Jinja2 tags intact.

    Tags are masked before splitting, so ``echo {{ Name }}`` yields
    ``["echo", "{{ Name }}"]`` whatever the tag contains.  Raises
    ``ValueError`` on unbalanced literal quotes.
    """
    tags: list[str] = []

    def mask(match: re.Match[str]) -> str:
        tags.append(match.group(0))
        return f"\x00{len(tags) - 1}\x00"

    words = shlex.split(_TAG_RE.sub(mask, command))
    return [_PLACEHOLDER_RE.sub(lambda m: tags[int(m.group(1))], word) for word in words]


def build_argv(
    renderer: TemplateRenderer,
    command: str,
    args: Sequence[str],
    context: Mapping[str, Any],
    *,
    shell: bool = False,
    name: str = "hook",
) -> str | list[str]:
    """Render a hook command into something ``run_command`` accepts.

    A string return value is run through the shell; a list is executed
    directly.  In argv mode each word is rendered on its own and a templated
    word that renders to nothing is dropped.

    Raises:
        ValueError: When the command template has unbalanced quotes.
        RenderError: When a word fails to render.
    """
    if uses_shell(command, args, shell):
        line = renderer.render_shell(command, context, name=f"command of hook {name}").strip()
        rendered_args = [
            shlex.quote(renderer.render_text(arg, context, name=f"argument of hook {name}"))
            for arg in args
        ]
        return " ".join([line, *rendered_args]) if line else ""

    argv: list[str] = []
    for word in split_template(command):
        rendered = renderer.render_text(word, context, name=f"command of hook {name}")
        if rendered or not _TAG_RE.search(word):
            argv.append(rendered)
    argv.extend(
        renderer.render_text(arg, context, name=f"argument of hook {name}") for arg in args
    )
    return argv


class HookRunner:
    """Runs planned hooks one at a time."""

    def __init__(self, default_timeout: int = 120) -> None:
        self.default_timeout = default_timeout

    async def run(self, hook: PlannedHook, cwd: Path) -> HookOutcome:
        """Execute *hook* in *cwd* and describe what happened.

        ``asyncio.CancelledError`` propagates (after the child is killed).
        """
        timeout = hook.timeout or self.default_timeout
        started = time.monotonic()
        try:
            rc, stdout, stderr = await run_command(
                hook.argv, cwd=cwd, timeout=timeout, env=hook.env or None
            )
        except (FileNotFoundError, PermissionError, NotADirectoryError) as exc:
            return HookOutcome(
                name=hook.name,
                command=hook.display_command,
                status=HookStatus.FAILED,
                required=hook.required,
                stderr=f"cannot start command: {exc}",
                duration_seconds=time.monotonic() - started,
            )

        if rc == -1 and "timed out" in stderr:
            status = HookStatus.TIMED_OUT
        elif rc == 0:
            status = HookStatus.SUCCEEDED
        else:
            status = HookStatus.FAILED

        return HookOutcome(
            name=hook.name,
            command=hook.display_command,
            status=status,
            required=hook.required,
            returncode=None if status is HookStatus.TIMED_OUT else rc,
            stdout=stdout,
            stderr=stderr,
            duration_seconds=time.monotonic() - started,
        )

    @staticmethod
    def skipped(hook: PlannedHook, reason: str = "") -> HookOutcome:
        return HookOutcome(
            name=hook.name,
            command=hook.display_command,
            status=HookStatus.SKIPPED,
            required=hook.required,
            stderr=reason,
        )
