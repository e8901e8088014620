"""Jinja2 template rendering for blueprint contents and destination paths.

Provides the TemplateRenderer class which expands blueprint templates against
a resolved variable map.  The environment is sandboxed, undefined names are
errors, and the helper filters are a fixed set of pure string transforms, so
rendering the same template with the same variables always yields the same
bytes and can run on any number of workers at once.
"""

from __future__ import annotations

import re
import shlex
from collections.abc import Callable, Mapping
from pathlib import PurePosixPath
from typing import Any

from jinja2 import StrictUndefined, TemplateError, TemplateSyntaxError, meta
from jinja2.sandbox import SandboxedEnvironment

from .errors import RenderError, UnsafeDestination


# ---------------------------------------------------------------------------
# TemplateRenderer
# ---------------------------------------------------------------------------


class TemplateRenderer:
    """Renders blueprint templates with Jinja2.

    One renderer is shared by the variable resolver (templated defaults), the
    planner (destination paths, hook working directories) and the stager
    (file contents).  It holds no per-run state.
    """

    def __init__(self) -> None:
        self.env = _build_environment()
        # Every {{ ... }} result is shell-quoted; used for hook command lines.
        self.shell_env = _build_environment(finalize=_shell_quote)

    # -- Rendering ---------------------------------------------------------

    def render_text(
        self, source: str, variables: Mapping[str, Any], name: str = "<template>"
    ) -> str:
        """Render *source* against *variables* and return the text.

        Raises:
            RenderError: On syntax errors, undefined names, or sandbox
                violations.  The error names the template.
        """
        return _render(self.env, source, variables, name)

    def render_shell(
        self, source: str, variables: Mapping[str, Any], name: str = "<template>"
    ) -> str:
        """Render a shell command line, quoting every substituted value.

        Literal template text passes through unchanged, so operators and glob
        patterns written by the blueprint author keep working while variable
        values always reach the shell as single words.
        """
        return _render(self.shell_env, source, variables, name)

    def render(
        self, source: str, variables: Mapping[str, Any], name: str = "<template>"
    ) -> bytes:
        """Render *source* and return UTF-8 encoded bytes."""
        return self.render_text(source, variables, name).encode("utf-8")

    def render_path(
        self, template: str, variables: Mapping[str, Any], name: str | None = None
    ) -> PurePosixPath:
        """Render a destination path template and check it stays inside the root.

        Raises:
            RenderError: When the template itself fails to render.
            UnsafeDestination: When the result is empty, absolute, or contains
                a ``..`` component, a backslash, or a NUL byte.
        """
        rendered = self.render_text(template, variables, name or template).strip()
        return safe_relative_path(rendered)

    # -- Static inspection (used at load time) -----------------------------

    def check_syntax(self, source: str, name: str = "<template>") -> None:
        """Parse *source* without rendering it.  Raises ``RenderError``."""
        try:
            self.env.parse(source)
        except TemplateSyntaxError as exc:
            raise RenderError(name, f"line {exc.lineno}: {exc.message}") from exc

    def referenced_names(self, source: str, name: str = "<template>") -> set[str]:
        """Return the free variable names *source* reads from its context."""
        try:
            ast = self.env.parse(source)
        except TemplateSyntaxError as exc:
            raise RenderError(name, f"line {exc.lineno}: {exc.message}") from exc
        return set(meta.find_undeclared_variables(ast)) - set(self.env.globals)

    @staticmethod
    def is_template(value: str) -> bool:
        """True when *value* contains Jinja2 markup."""
        return "{{" in value or "{%" in value


def _build_environment(finalize: Callable[[Any], Any] | None = None) -> SandboxedEnvironment:
    env = SandboxedEnvironment(
        undefined=StrictUndefined,
        autoescape=False,
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
        finalize=finalize,
    )
    # lipsum is random; everything else left in globals is pure
    env.globals.pop("lipsum", None)
    env.filters["slugify"] = _slugify_filter
    env.filters["pascal_case"] = _pascal_case_filter
    env.filters["snake_case"] = _snake_case_filter
    env.filters["camel_case"] = _camel_case_filter
    env.filters["kebab_case"] = _kebab_case_filter
    env.filters["title_case"] = _title_case_filter
    env.filters["quote"] = _quote_filter
    return env


def _render(
    env: SandboxedEnvironment, source: str, variables: Mapping[str, Any], name: str
) -> str:
    try:
        template = env.from_string(source)
        return template.render(dict(variables))
    except TemplateSyntaxError as exc:
        raise RenderError(name, f"line {exc.lineno}: {exc.message}") from exc
    except TemplateError as exc:
        raise RenderError(name, exc.message or str(exc)) from exc
    except (TypeError, ValueError, ArithmeticError, LookupError) as exc:
        raise RenderError(name, f"{type(exc).__name__}: {exc}") from exc


def _shell_quote(value: Any) -> str:
    return shlex.quote(str(value))


# ---------------------------------------------------------------------------
# Path safety
# ---------------------------------------------------------------------------


def safe_relative_path(rendered: str) -> PurePosixPath:
    """Validate a rendered path and return it as a relative POSIX path."""
    if not rendered:
        raise UnsafeDestination(rendered, "path renders to an empty string")
    if "\x00" in rendered:
        raise UnsafeDestination(rendered, "path contains a NUL byte")
    if "\\" in rendered:
        raise UnsafeDestination(rendered, "path contains a backslash")
    path = PurePosixPath(rendered)
    if path.is_absolute() or re.match(r"^[A-Za-z]:", rendered):
        raise UnsafeDestination(rendered, "path is absolute")
    if ".." in path.parts:
        raise UnsafeDestination(rendered, "path traverses outside the output root")
    parts = [part for part in path.parts if part not in ("", ".")]
    if not parts:
        raise UnsafeDestination(rendered, "path does not name a file")
    return PurePosixPath(*parts)


# ---------------------------------------------------------------------------
# Jinja2 custom filters
# ---------------------------------------------------------------------------

def _words(value: str) -> list[str]:
    spaced = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", str(value))
    spaced = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1 \2", spaced)
    return [w for w in re.split(r"[^A-Za-z0-9]+", spaced) if w]


def _slugify_filter(value: str) -> str:
    """Convert a string to a URL/filename-safe slug."""
    slug = re.sub(r"[^a-z0-9]+", "-", str(value).lower().strip())
    return slug.strip("-")


def _pascal_case_filter(value: str) -> str:
    """Convert ``some-thing`` or ``some_thing`` to ``SomeThing``."""
    return "".join(word.capitalize() for word in _words(value))


def _snake_case_filter(value: str) -> str:
    """Convert ``SomeThing`` or ``some-thing`` to ``some_thing``."""
    return "_".join(word.lower() for word in _words(value))


def _kebab_case_filter(value: str) -> str:
    """Convert ``SomeThing`` or ``some_thing`` to ``some-thing``."""
    return "-".join(word.lower() for word in _words(value))


def _camel_case_filter(value: str) -> str:
    """Convert ``some-thing`` or ``some_thing`` to ``someThing``."""
    pascal = _pascal_case_filter(value)
    if pascal:
        return pascal[0].lower() + pascal[1:]
    return ""


def _title_case_filter(value: str) -> str:
    """``user_account`` -> ``User Account``.  No pluralization rules."""
    return " ".join(word.capitalize() for word in _words(value))


def _quote_filter(value: Any) -> str:
    """Wrap a value in double quotes, escaping embedded quotes."""
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'
