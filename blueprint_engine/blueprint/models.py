"""Pydantic v2 models for blueprint manifests.

Defines the immutable in-memory form of a blueprint: its identity, variable
schema, file list, dependency list, and post-generation hooks.  Conditions
are compiled to ``Expression`` objects while the model is validated, so a
malformed condition fails the load rather than the generation.
"""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Literal, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator, model_validator

from ..errors import ExpressionError
from ..expressions import Expression, parse_expression


_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

#: Names injected into every render context next to the resolved variables.
BUILTIN_NAMES: frozenset[str] = frozenset({"blueprint"})

#: Hooks may additionally read the absolute output directory.
HOOK_BUILTIN_NAMES: frozenset[str] = BUILTIN_NAMES | {"output_path"}


def _compile_condition(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        if not value.strip():
            return None
        try:
            return parse_expression(value)
        except ExpressionError as exc:
            raise ValueError(str(exc)) from None
    return value


Condition = Annotated[Optional[Expression], BeforeValidator(_compile_condition)]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, populate_by_name=True)


# ---------------------------------------------------------------------------
# Variables
# ---------------------------------------------------------------------------

class VariableType(str, Enum):
    """Semantic type of a blueprint variable."""
    STRING = "string"
    INT = "int"
    BOOL = "bool"
    ENUM = "enum"
    LIST = "list"


_TYPE_ALIASES = {
    "str": "string",
    "text": "string",
    "integer": "int",
    "number": "int",
    "boolean": "bool",
    "choice": "enum",
    "array": "list",
}


class VariableValidation(_Frozen):
    """Validation rule applied to a variable's resolved value."""
    pattern: Optional[str] = Field(default=None, description="Regex the whole value must match")
    min_length: Optional[int] = Field(default=None, ge=0)
    max_length: Optional[int] = Field(default=None, ge=0)
    minimum: Optional[int] = Field(default=None, description="Lower bound for int variables")
    maximum: Optional[int] = Field(default=None, description="Upper bound for int variables")

    @field_validator("pattern")
    @classmethod
    def _pattern_compiles(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            try:
                re.compile(value)
            except re.error as exc:
                raise ValueError(f"invalid regex {value!r}: {exc}") from None
        return value


class VariableSpec(_Frozen):
    """A configurable blueprint variable."""
    name: str = Field(..., description="Unique variable name")
    type: VariableType = Field(default=VariableType.STRING)
    description: str = Field(default="")
    required: bool = Field(default=False)
    default: Any = Field(default=None, description="Literal, or a template over earlier variables")
    validation: Optional[VariableValidation] = Field(default=None)
    options: tuple[Any, ...] = Field(default=(), description="Enumerated set of allowed values")

    @model_validator(mode="before")
    @classmethod
    def _normalise(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "choices" in data and "options" not in data:
            data["options"] = data.pop("choices")
        if isinstance(data.get("type"), str):
            lowered = data["type"].strip().lower()
            data["type"] = _TYPE_ALIASES.get(lowered, lowered)
        rule = data.get("validation")
        if isinstance(rule, str):
            data["validation"] = {"pattern": rule} if rule.strip() else None
        if data.get("options") is None:
            data["options"] = ()
        return data

    @field_validator("name")
    @classmethod
    def _name_is_identifier(cls, value: str) -> str:
        if not _IDENTIFIER_RE.match(value):
            raise ValueError(f"variable name {value!r} is not a valid identifier")
        if value in BUILTIN_NAMES:
            raise ValueError(f"variable name {value!r} is reserved")
        return value

    @model_validator(mode="after")
    def _enum_has_options(self) -> "VariableSpec":
        if self.type is VariableType.ENUM and not self.options:
            raise ValueError(f"enum variable {self.name!r} must list its options")
        return self


# ---------------------------------------------------------------------------
# Files, dependencies, hooks
# ---------------------------------------------------------------------------

class FileEntry(_Frozen):
    """A template file and where it lands in the generated project."""
    source: str = Field(..., description="Template path relative to the blueprint root")
    destination: str = Field(..., description="Destination path template")
    condition: Condition = Field(default=None)
    executable: bool = Field(default=False)

    @model_validator(mode="before")
    @classmethod
    def _default_destination(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("destination") and data.get("source"):
            data = dict(data)
            source = str(data["source"])
            for suffix in (".tmpl", ".j2"):
                if source.endswith(suffix):
                    source = source[: -len(suffix)]
                    break
            data["destination"] = source
        return data


class DependencySpec(_Frozen):
    """An external module the generated project depends on."""
    module: str = Field(..., min_length=1, description="Module / package identifier")
    version: str = Field(default="", description="Version constraint, e.g. 'v1.8.0'")
    condition: Condition = Field(default=None)
    pinned: bool = Field(default=False, description="Pinned versions win over higher ones")

    @model_validator(mode="before")
    @classmethod
    def _split_module_version(cls, data: Any) -> Any:
        if isinstance(data, str):
            data = {"module": data}
        if isinstance(data, dict):
            data = dict(data)
            if "package" in data and "module" not in data:
                data["module"] = data.pop("package")
            module = data.get("module")
            if isinstance(module, str) and "@" in module and not data.get("version"):
                data["module"], data["version"] = module.rsplit("@", 1)
        return data


class HookSpec(_Frozen):
    """A command run in the generated project after files are committed."""
    name: str = Field(..., description="Display name")
    command: str = Field(..., min_length=1, description="Command line (template)")
    args: tuple[str, ...] = Field(default=(), description="Explicit argument list (templates)")
    work_dir: str = Field(default="", description="Working directory relative to the output root")
    condition: Condition = Field(default=None)
    required: bool = Field(default=False, description="Failure aborts the remaining hooks")
    timeout: Optional[int] = Field(default=None, ge=1, description="Seconds; falls back to config")
    shell: bool = Field(default=False, description="Run through the shell")
    env: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _normalise(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "working_dir" in data and "work_dir" not in data:
            data["work_dir"] = data.pop("working_dir")
        if not data.get("name"):
            data["name"] = data.get("description") or data.get("command", "")
        work_dir = str(data.get("work_dir") or "").replace(" ", "")
        if work_dir in ("{{.OutputPath}}", "{{output_path}}", "."):
            data["work_dir"] = ""
        return data


class ManifestSpec(_Frozen):
    """Which dependency manifest the generated project uses."""
    format: Literal["gomod", "requirements", "json"] = Field(default="gomod")
    path: str = Field(default="", description="Manifest path relative to the output root")

    @property
    def resolved_path(self) -> str:
        if self.path:
            return self.path
        return {
            "gomod": "go.mod",
            "requirements": "requirements.txt",
            "json": "dependencies.json",
        }[self.format]


# ---------------------------------------------------------------------------
# Blueprint
# ---------------------------------------------------------------------------

class Blueprint(_Frozen):
    """A versioned, parameterized definition of a source tree."""
    id: str = Field(..., min_length=1)
    name: str = Field(default="")
    version: str = Field(default="0.0.0")
    type: str = Field(default="")
    architecture: str = Field(default="standard")
    description: str = Field(default="")
    variables: tuple[VariableSpec, ...] = Field(default=())
    files: tuple[FileEntry, ...] = Field(default=())
    dependencies: tuple[DependencySpec, ...] = Field(default=())
    hooks: tuple[HookSpec, ...] = Field(default=())
    manifest: ManifestSpec = Field(default_factory=ManifestSpec)
    templates: dict[str, str] = Field(
        default_factory=dict, description="File source -> template text, read at load time"
    )
    root: Optional[Path] = Field(default=None, description="Directory the blueprint was loaded from")

    @model_validator(mode="before")
    @classmethod
    def _derive_identity(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if not data.get("id"):
            kind = str(data.get("type") or data.get("name") or "")
            architecture = str(data.get("architecture") or "standard")
            data["id"] = kind if architecture == "standard" else f"{kind}-{architecture}"
        if not data.get("name"):
            data["name"] = data["id"]
        if data.get("version") is not None:
            data["version"] = str(data["version"])
        return data

    @property
    def variable_names(self) -> tuple[str, ...]:
        return tuple(v.name for v in self.variables)

    def variable(self, name: str) -> VariableSpec:
        for spec in self.variables:
            if spec.name == name:
                return spec
        raise KeyError(name)

    def builtins(self) -> dict[str, Any]:
        """Context entries every template and condition may read."""
        return {
            "blueprint": {
                "id": self.id,
                "name": self.name,
                "version": self.version,
                "type": self.type,
                "architecture": self.architecture,
            }
        }
