"""Error taxonomy for the blueprint engine.

Every failure the engine can report derives from ``BlueprintEngineError`` and
carries a short ``kind`` tag plus the ``subject`` it concerns (a variable
name, a file destination, a hook name).  The orchestrator turns these into
``ErrorDetail`` records on the ``GenerationResult`` so they can be shown to
the user verbatim.
"""

from __future__ import annotations

from typing import Optional


class BlueprintEngineError(Exception):
    """Base class for all engine errors."""

    kind: str = "engine"

    def __init__(self, message: str, subject: Optional[str] = None) -> None:
        self.message = message
        self.subject = subject
        super().__init__(message)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class BlueprintLoadError(BlueprintEngineError):
    """Raised when a blueprint manifest is malformed or inconsistent."""

    kind = "load"

    def __init__(self, source: str, issues: list[str]) -> None:
        self.issues = list(issues)
        summary = "; ".join(self.issues) if self.issues else "unknown error"
        super().__init__(f"Invalid blueprint {source}: {summary}", subject=source)


class BlueprintNotFoundError(BlueprintEngineError):
    """Raised when a catalogue has no blueprint with the requested id."""

    kind = "not_found"

    def __init__(self, blueprint_id: str, available: list[str] | None = None) -> None:
        self.available = list(available or [])
        message = f"Blueprint '{blueprint_id}' not found"
        if self.available:
            message += f" (available: {', '.join(self.available)})"
        super().__init__(message, subject=blueprint_id)


# ---------------------------------------------------------------------------
# Variables
# ---------------------------------------------------------------------------


class VariableValidationError(BlueprintEngineError):
    """A single bad or missing variable value."""

    kind = "validation"

    def __init__(self, variable: str, message: str) -> None:
        self.variable = variable
        super().__init__(f"{variable}: {message}", subject=variable)


class MissingRequiredVariable(VariableValidationError):
    """A required variable received neither an override nor a default."""

    def __init__(self, variable: str) -> None:
        super().__init__(variable, "value is required")


class UnknownVariable(VariableValidationError):
    """An override names a variable the blueprint does not declare."""

    def __init__(self, variable: str) -> None:
        super().__init__(variable, "is not declared by this blueprint")


class ForwardReference(VariableValidationError):
    """A default expression references a variable declared later (or never)."""

    def __init__(self, variable: str, referenced: str) -> None:
        self.referenced = referenced
        super().__init__(
            variable,
            f"default references '{referenced}', which is not declared before it",
        )


class VariableResolutionError(BlueprintEngineError):
    """Raised with the whole batch of validation errors from one resolve."""

    kind = "validation"

    def __init__(self, errors: list[VariableValidationError]) -> None:
        self.errors = list(errors)
        joined = "; ".join(str(e) for e in self.errors)
        super().__init__(f"{len(self.errors)} variable error(s): {joined}")


# ---------------------------------------------------------------------------
# Expressions & rendering
# ---------------------------------------------------------------------------


class ExpressionError(BlueprintEngineError):
    """Malformed condition, or a condition referencing an unknown variable."""

    kind = "expression"

    def __init__(self, message: str, expression: Optional[str] = None) -> None:
        self.expression = expression
        if expression is not None:
            message = f"{message} in expression {expression!r}"
        super().__init__(message, subject=expression)


class RenderError(BlueprintEngineError):
    """Template expansion failed for a specific template."""

    kind = "render"

    def __init__(self, template: str, message: str) -> None:
        self.template = template
        super().__init__(f"{template}: {message}", subject=template)


class UnsafeDestination(BlueprintEngineError):
    """A rendered path is empty or would escape the output root."""

    kind = "unsafe_destination"

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        super().__init__(f"Unsafe destination {path!r}: {reason}", subject=path)


class DestinationCollision(BlueprintEngineError):
    """Two included file entries render to the same destination."""

    kind = "collision"

    def __init__(self, path: str, sources: list[str]) -> None:
        self.path = path
        self.sources = list(sources)
        super().__init__(
            f"Destination {path!r} is produced by more than one file: {', '.join(sources)}",
            subject=path,
        )


class DestinationNotEmpty(BlueprintEngineError):
    """The output directory exists and already has content."""

    kind = "validation"

    def __init__(self, path: str) -> None:
        super().__init__(
            f"Directory '{path}' already exists and is not empty",
            subject=path,
        )


# ---------------------------------------------------------------------------
# Output stages
# ---------------------------------------------------------------------------


class DependencyConflict(BlueprintEngineError):
    """Two pinned dependency specs disagree on the version of one module."""

    kind = "dependency"

    def __init__(self, module: str, versions: list[str]) -> None:
        self.module = module
        self.versions = list(versions)
        super().__init__(
            f"Conflicting pinned versions for {module}: {', '.join(versions)}",
            subject=module,
        )


class DependencyError(BlueprintEngineError):
    """Writing the dependency manifest failed."""

    kind = "dependency"


class CommitError(BlueprintEngineError):
    """Moving the staged tree into the output directory failed."""

    kind = "commit"


class HookError(BlueprintEngineError):
    """A post-generation hook failed."""

    kind = "hook"

    def __init__(self, hook: str, message: str, required: bool = False) -> None:
        self.hook = hook
        self.required = required
        super().__init__(f"Hook '{hook}' failed: {message}", subject=hook)


class GenerationCancelled(BlueprintEngineError):
    """The caller cancelled the run between stages."""

    kind = "cancelled"


class PlanningError(BlueprintEngineError):
    """Raised by ``GenerationOrchestrator.plan`` with every planning failure."""

    kind = "plan"

    def __init__(self, errors: list[BlueprintEngineError]) -> None:
        self.errors = list(errors)
        joined = "; ".join(e.message for e in self.errors)
        super().__init__(f"{len(self.errors)} planning error(s): {joined}")
