"""Blueprint loading and structural validation.

``BlueprintLoader.load`` reads a blueprint directory (its ``blueprint.yaml``
or ``template.yaml`` manifest plus the template files it lists) into a frozen
``Blueprint``.  It checks shape and internal consistency only; nothing is
evaluated or rendered, because no variable values are known yet.
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ..errors import BlueprintLoadError, RenderError, UnsafeDestination
from ..renderer import TemplateRenderer, safe_relative_path
from .models import BUILTIN_NAMES, HOOK_BUILTIN_NAMES, Blueprint


MANIFEST_NAMES: tuple[str, ...] = ("blueprint.yaml", "blueprint.yml", "template.yaml", "template.yml")


def find_manifest(directory: Path) -> Path | None:
    """Return the manifest inside *directory*, or ``None``."""
    for name in MANIFEST_NAMES:
        candidate = directory / name
        if candidate.is_file():
            return candidate
    return None


class BlueprintLoader:
    """Loads blueprints from disk.

    A loader is an explicit object handed to whoever needs blueprints; it
    keeps no cache of its own (wrap it in ``CachingLoader`` for that).
    """

    def __init__(self, renderer: TemplateRenderer | None = None) -> None:
        self.renderer = renderer if renderer is not None else TemplateRenderer()

    # -- Public API --------------------------------------------------------

    def load(self, source: str | Path) -> Blueprint:
        """Load the blueprint at *source* (a directory or a manifest file).

        Raises:
            BlueprintLoadError: With every issue found, not just the first.
        """
        manifest_path, root = self._locate(Path(source))
        try:
            raw = yaml.safe_load(manifest_path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise BlueprintLoadError(str(manifest_path), [f"cannot read manifest: {exc}"]) from exc
        except yaml.YAMLError as exc:
            raise BlueprintLoadError(str(manifest_path), [f"invalid YAML: {exc}"]) from exc
        return self.load_manifest(raw, root, label=str(manifest_path))

    def load_manifest(self, raw: Any, root: Path, label: str | None = None) -> Blueprint:
        """Build a blueprint from an already-parsed manifest mapping."""
        label = label or str(root)
        if not isinstance(raw, dict):
            raise BlueprintLoadError(label, ["manifest must be a mapping"])

        try:
            blueprint = Blueprint.model_validate({**_normalise_manifest(raw), "root": root})
        except ValidationError as exc:
            raise BlueprintLoadError(label, _format_validation_errors(exc)) from exc

        issues: list[str] = []
        templates = self._read_templates(blueprint, root, issues)
        blueprint = blueprint.model_copy(update={"templates": templates})
        issues.extend(self._check_structure(blueprint))
        if issues:
            raise BlueprintLoadError(label, issues)
        return blueprint

    # -- Internals ---------------------------------------------------------

    @staticmethod
    def _locate(source: Path) -> tuple[Path, Path]:
        if source.is_dir():
            manifest = find_manifest(source)
            if manifest is None:
                raise BlueprintLoadError(
                    str(source), [f"no manifest found (expected one of {', '.join(MANIFEST_NAMES)})"]
                )
            return manifest, source
        if source.is_file():
            return source, source.parent
        raise BlueprintLoadError(str(source), ["path does not exist"])

    def _read_templates(self, blueprint: Blueprint, root: Path, issues: list[str]) -> dict[str, str]:
        templates: dict[str, str] = {}
        for entry in blueprint.files:
            if entry.source in templates:
                continue
            try:
                relative = safe_relative_path(entry.source)
            except UnsafeDestination as exc:
                issues.append(f"file source {entry.source!r}: {exc.message}")
                continue
            path = root / relative
            try:
                templates[entry.source] = path.read_text(encoding="utf-8")
            except FileNotFoundError:
                issues.append(f"file source {entry.source!r} does not exist")
            except (OSError, UnicodeDecodeError) as exc:
                issues.append(f"file source {entry.source!r} cannot be read: {exc}")
        return templates

    def _check_structure(self, blueprint: Blueprint) -> list[str]:
        issues: list[str] = []
        declared: list[str] = []
        for spec in blueprint.variables:
            if spec.name in declared:
                issues.append(f"variable {spec.name!r} is declared more than once")
                continue
            if isinstance(spec.default, str) and self.renderer.is_template(spec.default):
                for ref in self._references(spec.default, f"default of {spec.name}", issues):
                    if ref in BUILTIN_NAMES:
                        continue
                    if ref not in declared:
                        issues.append(
                            f"default of {spec.name!r} references {ref!r}, "
                            "which is not declared before it"
                        )
            declared.append(spec.name)

        known = set(declared) | BUILTIN_NAMES

        def check_refs(
            names: set[str] | tuple[str, ...], where: str, extra: frozenset[str] = frozenset()
        ) -> None:
            for ref in sorted(set(names) - known - extra):
                issues.append(f"{where} references undeclared variable {ref!r}")

        unconditional: dict[str, str] = {}
        for entry in blueprint.files:
            where = f"file {entry.source!r}"
            if entry.condition is not None:
                check_refs(entry.condition.references, f"condition of {where}")
            check_refs(self._references(entry.destination, f"destination of {where}", issues),
                       f"destination of {where}")
            if entry.source in blueprint.templates:
                check_refs(
                    self._references(blueprint.templates[entry.source], entry.source, issues),
                    where,
                )
            if not self.renderer.is_template(entry.destination):
                try:
                    safe_relative_path(entry.destination)
                except UnsafeDestination as exc:
                    issues.append(f"destination of {where}: {exc.message}")
            if entry.condition is None:
                other = unconditional.get(entry.destination)
                if other is not None:
                    issues.append(
                        f"files {other!r} and {entry.source!r} share destination "
                        f"{entry.destination!r}"
                    )
                unconditional.setdefault(entry.destination, entry.source)

        for dep in blueprint.dependencies:
            if dep.condition is not None:
                check_refs(dep.condition.references, f"condition of dependency {dep.module!r}")

        for hook in blueprint.hooks:
            where = f"hook {hook.name!r}"
            if hook.condition is not None:
                check_refs(hook.condition.references, f"condition of {where}", HOOK_BUILTIN_NAMES)
            texts = [("command", hook.command), ("work_dir", hook.work_dir)]
            texts.extend(("argument", arg) for arg in hook.args)
            for label, text in texts:
                check_refs(self._references(text, f"{label} of {where}", issues),
                           f"{label} of {where}", HOOK_BUILTIN_NAMES)

        return issues

    def _references(self, source: str, name: str, issues: list[str]) -> set[str]:
        if not self.renderer.is_template(source):
            return set()
        try:
            return self.renderer.referenced_names(source, name=name)
        except RenderError as exc:
            issues.append(exc.message)
            return set()


# ---------------------------------------------------------------------------
# CachingLoader
# ---------------------------------------------------------------------------


class CachingLoader:
    """Memoises another loader's results by resolved manifest path.

    Blueprints are frozen, so sharing one instance between runs is safe.  The
    cache lives on this object; drop the object (or call ``clear``) to forget.
    """

    def __init__(self, loader: BlueprintLoader | None = None) -> None:
        self.loader = loader if loader is not None else BlueprintLoader()
        self._cache: dict[Path, Blueprint] = {}
        self._lock = threading.Lock()

    @property
    def renderer(self) -> TemplateRenderer:
        return self.loader.renderer

    def load(self, source: str | Path) -> Blueprint:
        key = Path(source).resolve()
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached
        blueprint = self.loader.load(key)
        with self._lock:
            return self._cache.setdefault(key, blueprint)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)


# ---------------------------------------------------------------------------
# Manifest normalisation
# ---------------------------------------------------------------------------


def _normalise_manifest(raw: dict[str, Any]) -> dict[str, Any]:
    """Accept the older manifest spellings next to the canonical ones."""
    data = dict(raw)

    deps = data.get("dependencies")
    if isinstance(deps, dict):
        flattened: list[Any] = list(deps.get("required") or [])
        flattened.extend(deps.get("conditional") or [])
        data["dependencies"] = flattened

    hooks = data.get("hooks")
    if isinstance(hooks, dict):
        data["hooks"] = list(hooks.get("post_generation") or [])
    if "post_hooks" in data and not data.get("hooks"):
        data["hooks"] = data.pop("post_hooks")

    for key in ("variables", "files", "dependencies", "hooks"):
        if data.get(key) is None:
            data[key] = []

    manifest = data.get("manifest")
    if isinstance(manifest, str):
        data["manifest"] = {"format": manifest}

    # Keys that only the prompt layer or documentation reads.
    for key in ("prompts", "features", "validation", "author", "license", "repository",
                "language", "metadata", "root", "templates"):
        data.pop(key, None)
    return data


def _format_validation_errors(exc: ValidationError) -> list[str]:
    issues = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        message = error.get("msg", "invalid value")
        issues.append(f"{location}: {message}" if location else message)
    return issues
