"""Variable resolution: overrides, templated defaults, and validation.

``VariableResolver.resolve`` walks a blueprint's variable specs in
declaration order, so a templated default can only see variables declared
before it.  Every problem is collected; a ``ResolvedVariables`` map is only
produced when there are none.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping, Sequence
from typing import Any, Optional

from .blueprint.models import BUILTIN_NAMES, VariableSpec, VariableType
from .errors import (
    ForwardReference,
    MissingRequiredVariable,
    RenderError,
    UnknownVariable,
    VariableResolutionError,
    VariableValidationError,
)
from .renderer import TemplateRenderer


_TRUE_STRINGS = frozenset({"true", "yes", "y", "on", "1"})
_FALSE_STRINGS = frozenset({"false", "no", "n", "off", "0", ""})


# ---------------------------------------------------------------------------
# ResolvedVariables
# ---------------------------------------------------------------------------


def _freeze(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    if isinstance(value, dict):
        return {k: _freeze(v) for k, v in value.items()}
    return value


class ResolvedVariables(Mapping[str, Any]):
    """Immutable name -> value map produced once per generation run.

    Sequences are frozen to tuples, so a template or condition cannot mutate
    a value another worker is reading.
    """

    __slots__ = ("_values",)

    def __init__(self, values: Mapping[str, Any]) -> None:
        self._values = {name: _freeze(value) for name, value in values.items()}

    def __getitem__(self, name: str) -> Any:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"ResolvedVariables({self._values!r})"

    def context(self, builtins: Optional[Mapping[str, Any]] = None) -> dict[str, Any]:
        """A fresh dict for rendering: builtins first, variables on top."""
        return {**(builtins or {}), **self._values}

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly copy (tuples become lists)."""
        return {
            name: list(value) if isinstance(value, tuple) else value
            for name, value in self._values.items()
        }


# ---------------------------------------------------------------------------
# Coercion & validation
# ---------------------------------------------------------------------------


def _zero_value(var_type: VariableType) -> Any:
    return {
        VariableType.STRING: "",
        VariableType.ENUM: "",
        VariableType.INT: 0,
        VariableType.BOOL: False,
        VariableType.LIST: (),
    }[var_type]


def coerce_value(spec: VariableSpec, raw: Any) -> Any:
    """Convert *raw* to the Python type declared by *spec*.

    Raises:
        VariableValidationError: When the value cannot be represented.
    """
    var_type = spec.type
    if var_type is VariableType.BOOL:
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, int) and raw in (0, 1):
            return bool(raw)
        if isinstance(raw, str):
            lowered = raw.strip().lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
        raise VariableValidationError(spec.name, f"expected a boolean, got {raw!r}")

    if var_type is VariableType.INT:
        if isinstance(raw, bool):
            raise VariableValidationError(spec.name, f"expected an integer, got {raw!r}")
        if isinstance(raw, int):
            return raw
        if isinstance(raw, str):
            try:
                return int(raw.strip())
            except ValueError:
                pass
        raise VariableValidationError(spec.name, f"expected an integer, got {raw!r}")

    if var_type is VariableType.LIST:
        if isinstance(raw, (list, tuple)):
            return tuple(raw)
        if isinstance(raw, str):
            return tuple(item.strip() for item in raw.split(",") if item.strip())
        raise VariableValidationError(spec.name, f"expected a list, got {raw!r}")

    # string / enum
    if isinstance(raw, (list, tuple, dict)):
        raise VariableValidationError(spec.name, f"expected a string, got {raw!r}")
    if isinstance(raw, bool):
        return "true" if raw else "false"
    if var_type is VariableType.ENUM and raw in spec.options:
        return raw
    return str(raw)


def validate_value(spec: VariableSpec, value: Any) -> None:
    """Apply the declared validation and option rules to *value*."""
    items = value if isinstance(value, tuple) else (value,)

    if spec.options:
        allowed = {str(option) for option in spec.options}
        for item in items:
            if str(item) not in allowed:
                choices = ", ".join(repr(o) for o in spec.options)
                raise VariableValidationError(
                    spec.name, f"{item!r} is not one of the allowed options ({choices})"
                )

    rule = spec.validation
    if rule is None:
        return

    if rule.pattern is not None:
        for item in items:
            if re.fullmatch(rule.pattern, str(item)) is None:
                raise VariableValidationError(
                    spec.name, f"{item!r} does not match pattern {rule.pattern!r}"
                )

    if isinstance(value, (str, tuple)):
        if rule.min_length is not None and len(value) < rule.min_length:
            raise VariableValidationError(
                spec.name, f"length {len(value)} is below the minimum of {rule.min_length}"
            )
        if rule.max_length is not None and len(value) > rule.max_length:
            raise VariableValidationError(
                spec.name, f"length {len(value)} exceeds the maximum of {rule.max_length}"
            )

    if isinstance(value, int) and not isinstance(value, bool):
        if rule.minimum is not None and value < rule.minimum:
            raise VariableValidationError(
                spec.name, f"{value} is below the minimum of {rule.minimum}"
            )
        if rule.maximum is not None and value > rule.maximum:
            raise VariableValidationError(
                spec.name, f"{value} exceeds the maximum of {rule.maximum}"
            )


# ---------------------------------------------------------------------------
# VariableResolver
# ---------------------------------------------------------------------------


class _DependsOnFailed(Exception):
    """A templated default reads a variable that already failed."""


class VariableResolver:
    """Merges defaults, templated defaults, and overrides into one map."""

    def __init__(self, renderer: TemplateRenderer | None = None) -> None:
        self.renderer = renderer if renderer is not None else TemplateRenderer()

    def resolve(
        self,
        specs: Sequence[VariableSpec],
        overrides: Optional[Mapping[str, Any]] = None,
        *,
        builtins: Optional[Mapping[str, Any]] = None,
    ) -> tuple[Optional[ResolvedVariables], list[VariableValidationError]]:
        """Resolve *specs* against *overrides*.

        Returns:
            ``(resolved, [])`` on success, ``(None, errors)`` otherwise.  The
            error list covers every variable, not just the first failure.  A
            templated default that reads a failed variable is skipped without
            an error of its own.
        """
        overrides = {k: v for k, v in (overrides or {}).items() if v is not None}
        builtins = dict(builtins or {})
        errors: list[VariableValidationError] = []

        declared = {spec.name for spec in specs}
        for name in sorted(set(overrides) - declared):
            errors.append(UnknownVariable(name))

        resolved: dict[str, Any] = {}
        seen: set[str] = set()
        failed: set[str] = set()

        for spec in specs:
            if spec.name in seen:
                errors.append(VariableValidationError(spec.name, "is declared more than once"))
                continue
            seen.add(spec.name)
            try:
                resolved[spec.name] = self._resolve_one(
                    spec, overrides, resolved, seen, failed, builtins
                )
            except _DependsOnFailed:
                failed.add(spec.name)
            except VariableValidationError as exc:
                errors.append(exc)
                failed.add(spec.name)

        if errors:
            return None, errors
        return ResolvedVariables(resolved), []

    def resolve_or_raise(
        self,
        specs: Sequence[VariableSpec],
        overrides: Optional[Mapping[str, Any]] = None,
        *,
        builtins: Optional[Mapping[str, Any]] = None,
    ) -> ResolvedVariables:
        """Like :meth:`resolve` but raises ``VariableResolutionError``."""
        resolved, errors = self.resolve(specs, overrides, builtins=builtins)
        if resolved is None:
            raise VariableResolutionError(errors)
        return resolved

    # -- Internals ---------------------------------------------------------

    def _resolve_one(
        self,
        spec: VariableSpec,
        overrides: Mapping[str, Any],
        resolved: Mapping[str, Any],
        seen: set[str],
        failed: set[str],
        builtins: Mapping[str, Any],
    ) -> Any:
        if spec.name in overrides:
            raw = overrides[spec.name]
            if spec.required and isinstance(raw, str) and not raw.strip():
                raise MissingRequiredVariable(spec.name)
        elif spec.default is not None:
            raw = self._render_default(spec, resolved, seen, failed, builtins)
        elif spec.required:
            raise MissingRequiredVariable(spec.name)
        else:
            return _zero_value(spec.type)

        value = coerce_value(spec, raw)
        validate_value(spec, value)
        return value

    def _render_default(
        self,
        spec: VariableSpec,
        resolved: Mapping[str, Any],
        seen: set[str],
        failed: set[str],
        builtins: Mapping[str, Any],
    ) -> Any:
        default = spec.default
        if not isinstance(default, str) or not self.renderer.is_template(default):
            return default

        try:
            references = self.renderer.referenced_names(default, name=spec.name)
        except RenderError as exc:
            raise VariableValidationError(spec.name, f"invalid default: {exc.message}") from exc

        references = sorted(references - BUILTIN_NAMES - set(builtins))
        for ref in references:
            # The current spec is already in ``seen``; a self reference is a forward one.
            if ref not in seen or ref == spec.name:
                raise ForwardReference(spec.name, ref)
        if failed.intersection(references):
            # Already reported on the variable it depends on.
            raise _DependsOnFailed(spec.name)

        try:
            return self.renderer.render_text(
                default, {**builtins, **resolved}, name=f"default of {spec.name}"
            )
        except RenderError as exc:
            raise VariableValidationError(
                spec.name, f"default failed to render: {exc.message}"
            ) from exc
