"""Dependency merging and manifest writers.

``merge_dependencies`` collapses the included ``DependencySpec`` entries of a
run into one version per module.  The result depends only on the set of
specs, never on their declaration order.  Writers then record the merged
set in the generated project's dependency manifest.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Protocol

from packaging.version import InvalidVersion, Version

from ..blueprint.models import DependencySpec
from ..errors import DependencyConflict, DependencyError
from .results import MergedDependency


# ---------------------------------------------------------------------------
# Version ordering
# ---------------------------------------------------------------------------


def version_key(version: str) -> tuple[Any, ...]:
    """Sort key ordering versions by ``packaging.version`` precedence.

    A leading ``v`` is accepted and a release sorts above its own
    pre-releases.  Versions that do not parse sort below every parseable one
    and order lexically among themselves.
    """
    try:
        return (1, Version(version.strip()), version)
    except InvalidVersion:
        return (0, version)


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def merge_dependencies(specs: Iterable[DependencySpec]) -> list[MergedDependency]:
    """Merge included dependency specs into one entry per module.

    Rules:
        - A pinned spec beats any number of unpinned ones.
        - Among unpinned specs the highest version wins.
        - Two pinned specs with different versions raise ``DependencyConflict``.

    Returns:
        Merged dependencies sorted by module.
    """
    grouped: dict[str, list[DependencySpec]] = {}
    for spec in specs:
        grouped.setdefault(spec.module, []).append(spec)

    merged: list[MergedDependency] = []
    for module in sorted(grouped):
        group = grouped[module]
        declared = sorted({s.version for s in group if s.version}, key=version_key)
        pins = sorted({s.version for s in group if s.pinned}, key=version_key)

        if len(pins) > 1:
            raise DependencyConflict(module, pins)
        if pins:
            version, pinned = pins[0], True
        else:
            version, pinned = (declared[-1] if declared else ""), False

        merged.append(
            MergedDependency(
                module=module, version=version, pinned=pinned, declared_versions=declared
            )
        )
    return merged


# ---------------------------------------------------------------------------
# Manifest writers
# ---------------------------------------------------------------------------


class ManifestWriter(Protocol):
    """Records merged dependencies in a generated project's manifest file."""

    def write(self, path: Path, dependencies: list[MergedDependency]) -> None: ...


class GoModWriter:
    """Updates or inserts ``require`` directives in an existing ``go.mod``."""

    _BLOCK_LINE_RE = re.compile(r"^(\s*)(\S+)\s+(\S+)(.*)$")
    _SINGLE_RE = re.compile(r"^(\s*require\s+)(\S+)\s+(\S+)(.*)$")

    def write(self, path: Path, dependencies: list[MergedDependency]) -> None:
        if not dependencies:
            return
        for dep in dependencies:
            if not dep.version:
                raise DependencyError(
                    f"go.mod requires a version for {dep.module}", subject=dep.module
                )
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise DependencyError(
                f"{path.name} not found in the generated project", subject=str(path)
            ) from None
        except OSError as exc:
            raise DependencyError(f"cannot read {path}: {exc}", subject=str(path)) from exc

        wanted = {dep.module: dep.version for dep in dependencies}
        lines = text.splitlines()
        seen: set[str] = set()
        block_start: int | None = None
        in_block = False

        for index, line in enumerate(lines):
            stripped = line.strip()
            if stripped.startswith("require (") or stripped == "require(":
                in_block = True
                if block_start is None:
                    block_start = index
                continue
            if in_block:
                if stripped == ")":
                    in_block = False
                    continue
                match = self._BLOCK_LINE_RE.match(line)
                if match and match.group(2) in wanted:
                    indent, module, _, rest = match.groups()
                    lines[index] = f"{indent}{module} {wanted[module]}{rest}"
                    seen.add(module)
                continue
            match = self._SINGLE_RE.match(line)
            if match and match.group(2) in wanted:
                prefix, module, _, rest = match.groups()
                lines[index] = f"{prefix}{module} {wanted[module]}{rest}"
                seen.add(module)

        missing = [dep for dep in dependencies if dep.module not in seen]
        if missing:
            new_lines = [f"\t{dep.module} {dep.version}" for dep in missing]
            if block_start is not None:
                lines[block_start + 1:block_start + 1] = new_lines
            else:
                if lines and lines[-1].strip():
                    lines.append("")
                lines.extend(["require (", *new_lines, ")"])

        _write_text(path, "\n".join(lines) + "\n")


class RequirementsWriter:
    """Writes ``name==version`` lines (a pip ``requirements.txt``)."""

    def write(self, path: Path, dependencies: list[MergedDependency]) -> None:
        lines = []
        for dep in dependencies:
            version = dep.version
            if not version:
                lines.append(dep.module)
            elif version[0] in "<>=!~":
                lines.append(f"{dep.module}{version}")
            else:
                lines.append(f"{dep.module}=={version.removeprefix('v')}")
        _write_text(path, "".join(f"{line}\n" for line in lines))


class JsonManifestWriter:
    """Writes ``{"dependencies": {module: version}}``."""

    def write(self, path: Path, dependencies: list[MergedDependency]) -> None:
        payload = {"dependencies": {dep.module: dep.version for dep in dependencies}}
        _write_text(path, json.dumps(payload, indent=2, sort_keys=True) + "\n")


MANIFEST_WRITERS: dict[str, ManifestWriter] = {
    "gomod": GoModWriter(),
    "requirements": RequirementsWriter(),
    "json": JsonManifestWriter(),
}


def _write_text(path: Path, content: str) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise DependencyError(f"cannot write {path}: {exc}", subject=str(path)) from exc
