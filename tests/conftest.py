"""Shared pytest fixtures for the blueprint engine test suite.

Provides reusable fixtures for:
- Paths to the fixture blueprints under ``tests/fixtures/blueprints``
- Loaded fixture blueprints
- A factory that writes ad-hoc blueprints into a temporary directory
- Orchestrators with hooks enabled or disabled
"""

from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Any, Callable

import pytest
import yaml

from blueprint_engine.blueprint import Blueprint, BlueprintLoader
from blueprint_engine.config import EngineConfig
from blueprint_engine.generator import GenerationOrchestrator
from blueprint_engine.renderer import TemplateRenderer


FIXTURES_DIR = Path(__file__).parent / "fixtures"
BLUEPRINTS_DIR = FIXTURES_DIR / "blueprints"


# ---------------------------------------------------------------------------
# Paths & Directories
# ---------------------------------------------------------------------------

@pytest.fixture
def blueprints_dir() -> Path:
    """Directory holding the fixture blueprints (a valid catalogue root)."""
    assert BLUEPRINTS_DIR.is_dir(), f"Fixture blueprints not found at {BLUEPRINTS_DIR}"
    return BLUEPRINTS_DIR


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    """Not-yet-existing directory to generate into (auto-cleanup)."""
    return tmp_path / "out" / "project"


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

@pytest.fixture
def renderer() -> TemplateRenderer:
    return TemplateRenderer()


@pytest.fixture
def loader(renderer: TemplateRenderer) -> BlueprintLoader:
    return BlueprintLoader(renderer)


@pytest.fixture
def orchestrator() -> GenerationOrchestrator:
    """Orchestrator with hooks disabled, for tests that only care about files."""
    return GenerationOrchestrator(EngineConfig(run_hooks=False, hook_timeout=10))


@pytest.fixture
def hook_orchestrator() -> GenerationOrchestrator:
    """Orchestrator that runs hooks with a short timeout."""
    return GenerationOrchestrator(EngineConfig(run_hooks=True, hook_timeout=10))


# ---------------------------------------------------------------------------
# Fixture blueprints
# ---------------------------------------------------------------------------

@pytest.fixture
def cli_blueprint(loader: BlueprintLoader, blueprints_dir: Path) -> Blueprint:
    return loader.load(blueprints_dir / "cli-simple")


@pytest.fixture
def feature_blueprint(loader: BlueprintLoader, blueprints_dir: Path) -> Blueprint:
    return loader.load(blueprints_dir / "feature-toggle")


@pytest.fixture
def web_blueprint(loader: BlueprintLoader, blueprints_dir: Path) -> Blueprint:
    return loader.load(blueprints_dir / "web-api")


# ---------------------------------------------------------------------------
# Ad-hoc blueprints
# ---------------------------------------------------------------------------

@pytest.fixture
def write_blueprint(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing a blueprint directory and returning its path.

    Usage:
        def test_something(write_blueprint, loader):
            path = write_blueprint(
                {"id": "demo", "files": [{"source": "a.tmpl", "destination": "a"}]},
                {"a.tmpl": "hello {{ Name }}"},
            )
            blueprint = loader.load(path)
    """
    counter = {"n": 0}

    def factory(
        manifest: dict[str, Any] | str,
        templates: dict[str, str] | None = None,
        name: str | None = None,
    ) -> Path:
        counter["n"] += 1
        directory = tmp_path / "blueprints" / (name or f"bp{counter['n']}")
        directory.mkdir(parents=True)
        if isinstance(manifest, str):
            text = textwrap.dedent(manifest)
        else:
            text = yaml.safe_dump(manifest, sort_keys=False)
        (directory / "blueprint.yaml").write_text(text, encoding="utf-8")
        for relative, content in (templates or {}).items():
            path = directory / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        return directory

    return factory


@pytest.fixture
def make_blueprint(write_blueprint: Callable[..., Path], loader: BlueprintLoader) -> Callable[..., Blueprint]:
    """Like ``write_blueprint`` but returns the loaded ``Blueprint``."""

    def factory(
        manifest: dict[str, Any] | str,
        templates: dict[str, str] | None = None,
        name: str | None = None,
    ) -> Blueprint:
        return loader.load(write_blueprint(manifest, templates, name))

    return factory


@pytest.fixture
def snapshot() -> Callable[[Path], dict[str, bytes]]:
    """Function mapping every file under a root (POSIX relative path) to its bytes."""
    return _snapshot_tree


def _snapshot_tree(root: Path) -> dict[str, bytes]:
    if not root.exists():
        return {}
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }
