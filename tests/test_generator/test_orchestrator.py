"""Tests for GenerationOrchestrator.

Covers:
- Conditional file inclusion and destination rendering
- Deterministic output across runs
- Atomicity: failed or cancelled runs leave the output untouched
- Path safety, collisions, and complete variable validation
- Output directory checks, force, and dry runs
- Dependency manifests (go.mod, requirements.txt)
- Hooks: disabled, optional and required failures, work_dir, output_path
- Cancellation between stages, between hooks, and of the calling task
- plan(), render_in_memory(), generate_from_catalogue()
"""

from __future__ import annotations

import asyncio
import threading
import time
from pathlib import Path

import pytest

from blueprint_engine.blueprint import BlueprintCatalogue
from blueprint_engine.config import EngineConfig
from blueprint_engine.errors import (
    BlueprintNotFoundError,
    PlanningError,
    VariableResolutionError,
)
from blueprint_engine.generator import (
    GenerationOrchestrator,
    GenerationStatus,
    HookRunner,
    HookStatus,
    LocalFileSystem,
)


pytestmark = pytest.mark.unit


def _leftovers(parent: Path) -> list[str]:
    if not parent.exists():
        return []
    return [
        p.name for p in parent.iterdir()
        if p.name.startswith((".blueprint-staging-", ".blueprint-backup-"))
    ]


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


class TestFiles:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("feature", "expected"),
        [
            (True, {"README.md": b"# demo\nFeature enabled.\n", "demo/feature.txt": b"feature of demo\n"}),
            (False, {"README.md": b"# demo\n"}),
        ],
    )
    async def test_conditional_inclusion(
        self, orchestrator, feature_blueprint, output_dir, snapshot, feature, expected
    ):
        result = await orchestrator.generate(
            feature_blueprint, {"Name": "demo", "Feature": feature}, output_dir
        )
        assert result.status is GenerationStatus.COMPLETED
        assert result.success is True
        assert result.errors == []
        assert sorted(result.files_written) == sorted(expected)
        assert snapshot(output_dir) == expected

    @pytest.mark.asyncio
    async def test_cli_blueprint_layout(self, orchestrator, cli_blueprint, output_dir):
        result = await orchestrator.generate(cli_blueprint, {"ProjectName": "my-tool"}, output_dir)
        assert result.status is GenerationStatus.COMPLETED
        assert result.files_written == [
            "go.mod",
            "main.go",
            "cmd/my_tool.go",
            "internal/logger/logger.go",
            "scripts/build.sh",
        ]
        assert "log/slog" in (output_dir / "internal/logger/logger.go").read_text(encoding="utf-8")
        assert (output_dir / "scripts/build.sh").stat().st_mode & 0o100
        command = (output_dir / "cmd/my_tool.go").read_text(encoding="utf-8")
        assert "// MyTool commands:\n// - serve\n// - version\n" in command
        assert result.variables["ModulePath"] == "github.com/example/my-tool"

    @pytest.mark.asyncio
    async def test_conditional_alternatives_share_a_destination(
        self, orchestrator, cli_blueprint, output_dir
    ):
        result = await orchestrator.generate(
            cli_blueprint, {"ProjectName": "my-tool", "Logger": "zap"}, output_dir
        )
        assert result.status is GenerationStatus.COMPLETED
        logger = (output_dir / "internal/logger/logger.go").read_text(encoding="utf-8")
        assert "go.uber.org/zap" in logger

    @pytest.mark.asyncio
    async def test_deterministic(self, orchestrator, cli_blueprint, tmp_path, snapshot):
        overrides = {"ProjectName": "my-tool", "Logger": "zap", "Commands": ["a", "b", "c"]}
        first = await orchestrator.generate(cli_blueprint, overrides, tmp_path / "one")
        second = await orchestrator.generate(cli_blueprint, overrides, tmp_path / "two")
        assert first.success and second.success
        assert snapshot(tmp_path / "one") == snapshot(tmp_path / "two")
        assert first.files_written == second.files_written

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("a", "b", "expected"),
        [
            (False, False, []),
            (True, False, ["any.txt", "only_a.txt"]),
            (False, True, ["any.txt"]),
            (True, True, ["any.txt", "both.txt"]),
        ],
    )
    async def test_two_variable_conditions(
        self, orchestrator, make_blueprint, output_dir, snapshot, a, b, expected
    ):
        blueprint = make_blueprint(
            {
                "id": "truth-table",
                "variables": [
                    {"name": "A", "type": "bool", "default": False},
                    {"name": "B", "type": "bool", "default": False},
                ],
                "files": [
                    {"source": "f.tmpl", "destination": "only_a.txt", "condition": "A == true && !B"},
                    {"source": "f.tmpl", "destination": "any.txt", "condition": "A || B"},
                    {"source": "f.tmpl", "destination": "both.txt", "condition": "A and B"},
                ],
            },
            {"f.tmpl": "{{ A }} {{ B }}\n"},
        )
        result = await orchestrator.generate(blueprint, {"A": a, "B": b}, output_dir)
        assert result.status is GenerationStatus.COMPLETED, result.errors
        assert sorted(result.files_written) == expected
        assert sorted(snapshot(output_dir)) == expected
        if expected:
            content = f"{a} {b}\n".encode("utf-8")
            assert set(snapshot(output_dir).values()) == {content}


# ---------------------------------------------------------------------------
# Failures before and during staging
# ---------------------------------------------------------------------------


class TestFailures:
    @pytest.mark.asyncio
    async def test_every_variable_error_is_reported(self, orchestrator, cli_blueprint, output_dir):
        result = await orchestrator.generate(
            cli_blueprint,
            {"ProjectName": "Bad Name", "Logger": "log4j", "Extra": "x"},
            output_dir,
        )
        assert result.status is GenerationStatus.ABORTED
        assert sorted(e.subject for e in result.errors) == [
            "Extra", "Logger", "ProjectName",
        ]
        assert all(e.stage == "resolve" for e in result.errors)
        assert all(e.kind == "validation" for e in result.errors)
        assert not output_dir.parent.exists()

    @pytest.mark.asyncio
    async def test_missing_required_variable(self, orchestrator, feature_blueprint, output_dir):
        result = await orchestrator.generate(feature_blueprint, {}, output_dir)
        assert result.status is GenerationStatus.ABORTED
        assert result.errors[0].subject == "Name"
        assert result.files_written == []

    @pytest.mark.asyncio
    async def test_unsafe_destination_aborts(self, orchestrator, make_blueprint, tmp_path, output_dir):
        blueprint = make_blueprint(
            {
                "id": "escape",
                "variables": [{"name": "Dir", "default": "../../etc"}],
                "files": [{"source": "x.tmpl", "destination": "{{ Dir }}/passwd"}],
            },
            {"x.tmpl": "owned\n"},
        )
        before = sorted(p.relative_to(tmp_path) for p in tmp_path.rglob("*"))
        result = await orchestrator.generate(blueprint, {}, output_dir)
        assert result.status is GenerationStatus.ABORTED
        assert result.errors_of_kind("unsafe_destination")
        assert result.errors[0].stage == "plan"
        assert sorted(p.relative_to(tmp_path) for p in tmp_path.rglob("*")) == before

    @pytest.mark.asyncio
    async def test_rendered_collision_aborts(self, orchestrator, make_blueprint, output_dir):
        blueprint = make_blueprint(
            {
                "id": "collide",
                "variables": [{"name": "A", "default": "same"}, {"name": "B", "default": "same"}],
                "files": [
                    {"source": "a.tmpl", "destination": "{{ A }}.txt"},
                    {"source": "b.tmpl", "destination": "{{ B }}.txt"},
                ],
            },
            {"a.tmpl": "a", "b.tmpl": "b"},
        )
        result = await orchestrator.generate(blueprint, {}, output_dir)
        assert result.status is GenerationStatus.ABORTED
        [collision] = result.errors_of_kind("collision")
        assert collision.subject == "same.txt"
        assert not output_dir.exists()

    @pytest.mark.asyncio
    async def test_conflicting_pins_abort_at_plan(self, orchestrator, make_blueprint, output_dir):
        blueprint = make_blueprint(
            {
                "id": "pins",
                "dependencies": [
                    {"module": "m", "version": "v1.0.0", "pinned": True},
                    {"module": "m", "version": "v2.0.0", "pinned": True},
                ],
            }
        )
        result = await orchestrator.generate(blueprint, {}, output_dir)
        assert result.status is GenerationStatus.ABORTED
        [error] = result.errors
        assert (error.kind, error.stage, error.subject) == ("dependency", "plan", "m")

    @pytest.mark.asyncio
    async def test_render_error_leaves_output_untouched(self, make_blueprint, output_dir, snapshot):
        blueprint = make_blueprint(
            {
                "id": "broken",
                "variables": [{"name": "Divisor", "type": "int", "default": 0}],
                "files": [
                    {"source": "ok.tmpl", "destination": "ok.txt"},
                    {"source": "bad.tmpl", "destination": "bad.txt"},
                ],
            },
            {"ok.tmpl": "fine\n", "bad.tmpl": "{{ 10 // Divisor }}\n"},
        )
        output_dir.mkdir(parents=True)
        (output_dir / "keep.txt").write_text("keep", encoding="utf-8")
        before = snapshot(output_dir)

        orchestrator = GenerationOrchestrator(EngineConfig(force=True, run_hooks=False))
        result = await orchestrator.generate(blueprint, {}, output_dir)

        assert result.status is GenerationStatus.PARTIALLY_FAILED
        [error] = result.errors
        assert (error.kind, error.stage, error.subject) == ("render", "stage", "bad.tmpl")
        assert result.files_written == []
        assert snapshot(output_dir) == before
        assert _leftovers(output_dir.parent) == []

    @pytest.mark.asyncio
    async def test_non_empty_output_is_refused(self, orchestrator, feature_blueprint, output_dir):
        output_dir.mkdir(parents=True)
        (output_dir / "keep.txt").write_text("keep", encoding="utf-8")
        result = await orchestrator.generate(feature_blueprint, {"Name": "demo"}, output_dir)
        assert result.status is GenerationStatus.ABORTED
        assert result.errors[0].stage == "plan"
        assert "not empty" in result.errors[0].message
        assert sorted(p.name for p in output_dir.iterdir()) == ["keep.txt"]

    @pytest.mark.asyncio
    async def test_force_overwrites_and_keeps_other_files(self, feature_blueprint, output_dir):
        output_dir.mkdir(parents=True)
        (output_dir / "keep.txt").write_text("keep", encoding="utf-8")
        (output_dir / "README.md").write_text("old", encoding="utf-8")
        orchestrator = GenerationOrchestrator(EngineConfig(force=True, run_hooks=False))
        result = await orchestrator.generate(feature_blueprint, {"Name": "demo"}, output_dir)
        assert result.status is GenerationStatus.COMPLETED
        assert (output_dir / "README.md").read_text(encoding="utf-8") == "# demo\n"
        assert (output_dir / "keep.txt").read_text(encoding="utf-8") == "keep"

    @pytest.mark.asyncio
    async def test_commit_failure_aborts(self, feature_blueprint, output_dir):
        class FailingFileSystem(LocalFileSystem):
            def commit(self, staging_dir, output_dir, files):
                raise OSError("disk on fire")

        orchestrator = GenerationOrchestrator(
            EngineConfig(run_hooks=False), filesystem=FailingFileSystem()
        )
        result = await orchestrator.generate(feature_blueprint, {"Name": "demo"}, output_dir)
        assert result.status is GenerationStatus.ABORTED
        assert result.errors[0].stage == "commit"
        assert not output_dir.exists()
        assert _leftovers(output_dir.parent) == []


# ---------------------------------------------------------------------------
# Dry run
# ---------------------------------------------------------------------------


class TestDryRun:
    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(self, hook_orchestrator, web_blueprint, output_dir):
        result = await hook_orchestrator.generate(
            web_blueprint, {"ProjectName": "api"}, output_dir, dry_run=True
        )
        assert result.status is GenerationStatus.COMPLETED
        assert result.dry_run is True
        assert result.files_planned == ["handlers/health.go", "go.mod"]
        assert result.files_written == []
        assert [d.module for d in result.dependencies] == ["github.com/gin-gonic/gin"]
        assert result.hook("marker").status is HookStatus.SKIPPED
        assert not output_dir.parent.exists()

    @pytest.mark.asyncio
    async def test_config_dry_run(self, feature_blueprint, output_dir):
        orchestrator = GenerationOrchestrator(EngineConfig(dry_run=True))
        result = await orchestrator.generate(feature_blueprint, {"Name": "demo"}, output_dir)
        assert result.dry_run is True
        assert not output_dir.exists()


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


class TestDependencies:
    @pytest.mark.asyncio
    async def test_go_mod_gets_highest_version(self, orchestrator, cli_blueprint, output_dir):
        result = await orchestrator.generate(cli_blueprint, {"ProjectName": "my-tool"}, output_dir)
        assert result.status is GenerationStatus.COMPLETED
        assert [(d.module, d.version) for d in result.dependencies] == [
            ("github.com/spf13/cobra", "v1.8.0")
        ]
        assert (output_dir / "go.mod").read_text(encoding="utf-8") == (
            "module github.com/example/my-tool\n"
            "\n"
            "go 1.22\n"
            "\n"
            "require (\n"
            "\tgithub.com/spf13/cobra v1.8.0\n"
            ")\n"
        )

    @pytest.mark.asyncio
    async def test_conditional_dependency_included(self, orchestrator, cli_blueprint, output_dir):
        result = await orchestrator.generate(
            cli_blueprint, {"ProjectName": "my-tool", "Logger": "zap"}, output_dir
        )
        assert [d.module for d in result.dependencies] == [
            "github.com/spf13/cobra",
            "go.uber.org/zap",
        ]
        assert "\tgo.uber.org/zap v1.27.0\n" in (output_dir / "go.mod").read_text(encoding="utf-8")

    @pytest.mark.asyncio
    async def test_requirements_manifest(self, orchestrator, make_blueprint, output_dir):
        blueprint = make_blueprint(
            {
                "id": "py",
                "manifest": "requirements",
                "files": [{"source": "main.py.tmpl", "destination": "main.py"}],
                "dependencies": [
                    {"module": "rich", "version": ">=13.0"},
                    {"module": "httpx", "version": "0.27.0"},
                ],
            },
            {"main.py.tmpl": "print('hi')\n"},
        )
        result = await orchestrator.generate(blueprint, {}, output_dir)
        assert result.status is GenerationStatus.COMPLETED
        assert (output_dir / "requirements.txt").read_text(encoding="utf-8") == (
            "httpx==0.27.0\nrich>=13.0\n"
        )

    @pytest.mark.asyncio
    async def test_missing_go_mod_is_partial_failure(self, orchestrator, make_blueprint, output_dir):
        blueprint = make_blueprint(
            {
                "id": "nogomod",
                "files": [{"source": "main.go.tmpl", "destination": "main.go"}],
                "dependencies": [{"module": "github.com/spf13/cobra", "version": "v1.8.0"}],
            },
            {"main.go.tmpl": "package main\n"},
        )
        result = await orchestrator.generate(blueprint, {}, output_dir)
        assert result.status is GenerationStatus.PARTIALLY_FAILED
        [error] = result.errors
        assert (error.kind, error.stage) == ("dependency", "dependencies")
        assert result.files_written == ["main.go"]
        assert (output_dir / "main.go").exists()


# ---------------------------------------------------------------------------
# Hooks
# ---------------------------------------------------------------------------


def _hook_blueprint(make_blueprint, hooks, files=None, templates=None):
    return make_blueprint(
        {
            "id": "hooked",
            "variables": [{"name": "Name", "default": "demo"}],
            "files": files or [{"source": "a.tmpl", "destination": "sub/a.txt"}],
            "hooks": hooks,
        },
        templates or {"a.tmpl": "a\n"},
    )


class TestHooks:
    @pytest.mark.asyncio
    async def test_hooks_disabled(self, orchestrator, make_blueprint, output_dir):
        blueprint = _hook_blueprint(make_blueprint, [{"name": "touch", "command": "touch x"}])
        result = await orchestrator.generate(blueprint, {}, output_dir)
        assert result.status is GenerationStatus.COMPLETED
        assert result.hook("touch").status is HookStatus.SKIPPED
        assert not (output_dir / "x").exists()

    @pytest.mark.asyncio
    async def test_hooks_run_in_order_in_output(self, hook_orchestrator, make_blueprint, output_dir):
        blueprint = _hook_blueprint(
            make_blueprint,
            [
                {"name": "first", "command": "touch {{ Name }}.txt"},
                {"name": "second", "command": "touch here.txt", "work_dir": "sub"},
                {"name": "absolute", "command": "touch {{ output_path }}/abs.txt"},
            ],
        )
        result = await hook_orchestrator.generate(blueprint, {}, output_dir)
        assert result.status is GenerationStatus.COMPLETED
        assert [h.name for h in result.hooks] == ["first", "second", "absolute"]
        assert all(h.succeeded for h in result.hooks)
        assert (output_dir / "demo.txt").exists()
        assert (output_dir / "sub" / "here.txt").exists()
        assert (output_dir / "abs.txt").exists()

    @pytest.mark.asyncio
    async def test_hook_condition(self, hook_orchestrator, make_blueprint, output_dir):
        blueprint = _hook_blueprint(
            make_blueprint,
            [{"name": "never", "command": "touch never.txt", "condition": 'Name == "other"'}],
        )
        result = await hook_orchestrator.generate(blueprint, {}, output_dir)
        assert result.hooks == []
        assert not (output_dir / "never.txt").exists()

    @pytest.mark.asyncio
    async def test_optional_failure_keeps_completed(self, hook_orchestrator, make_blueprint, output_dir):
        blueprint = _hook_blueprint(
            make_blueprint,
            [
                {"name": "fails", "command": "false"},
                {"name": "after", "command": "touch after.txt"},
            ],
        )
        result = await hook_orchestrator.generate(blueprint, {}, output_dir)
        assert result.status is GenerationStatus.COMPLETED
        assert result.hook("fails").status is HookStatus.FAILED
        assert result.hook("after").succeeded
        [error] = result.errors
        assert (error.kind, error.stage, error.subject) == ("hook", "hooks", "fails")
        assert "exit code 1" in error.message

    @pytest.mark.asyncio
    async def test_required_failure_skips_the_rest(self, hook_orchestrator, make_blueprint, output_dir):
        blueprint = _hook_blueprint(
            make_blueprint,
            [
                {"name": "fails", "command": "false", "required": True},
                {"name": "after", "command": "touch after.txt"},
            ],
        )
        result = await hook_orchestrator.generate(blueprint, {}, output_dir)
        assert result.status is GenerationStatus.PARTIALLY_FAILED
        assert result.hook("after").status is HookStatus.SKIPPED
        assert "required hook 'fails' failed" in result.hook("after").stderr
        assert not (output_dir / "after.txt").exists()
        assert (output_dir / "sub" / "a.txt").exists()

    @pytest.mark.asyncio
    async def test_unknown_command_is_a_hook_failure(self, hook_orchestrator, make_blueprint, output_dir):
        blueprint = _hook_blueprint(
            make_blueprint, [{"name": "ghost", "command": "definitely-not-a-real-binary-xyz"}]
        )
        result = await hook_orchestrator.generate(blueprint, {}, output_dir)
        assert result.status is GenerationStatus.COMPLETED
        assert result.hook("ghost").status is HookStatus.FAILED
        assert result.errors_of_kind("hook")

    @pytest.mark.asyncio
    async def test_hook_work_dir_outside_output_aborts(self, hook_orchestrator, make_blueprint, output_dir):
        blueprint = _hook_blueprint(
            make_blueprint, [{"name": "escape", "command": "ls", "work_dir": "../.."}]
        )
        result = await hook_orchestrator.generate(blueprint, {}, output_dir)
        assert result.status is GenerationStatus.ABORTED
        assert result.errors_of_kind("unsafe_destination")
        assert not output_dir.exists()

    @pytest.mark.asyncio
    async def test_shell_metacharacters_in_values_stay_literal(
        self, hook_orchestrator, make_blueprint, output_dir
    ):
        value = "x; touch PWNED; echo *"
        blueprint = _hook_blueprint(
            make_blueprint,
            [
                {"name": "argv", "command": "echo {{ Name }}"},
                {"name": "globbed", "command": "echo sub/* {{ Name }}"},
                {"name": "shell", "command": "echo {{ Name }} && true", "shell": True},
            ],
        )
        result = await hook_orchestrator.generate(blueprint, {"Name": value}, output_dir)
        assert result.status is GenerationStatus.COMPLETED, result.errors
        assert result.hook("argv").stdout == value
        assert result.hook("globbed").stdout == f"sub/a.txt {value}"
        assert result.hook("shell").stdout == value
        assert not (output_dir / "PWNED").exists()

    @pytest.mark.asyncio
    async def test_apostrophe_in_value(self, hook_orchestrator, make_blueprint, output_dir):
        blueprint = _hook_blueprint(
            make_blueprint,
            [
                {"name": "quoted", "command": 'touch "{{ Name }}.txt"'},
                {"name": "bare", "command": "echo {{ Name }}"},
            ],
        )
        result = await hook_orchestrator.generate(blueprint, {"Name": "O'Reilly"}, output_dir)
        assert result.status is GenerationStatus.COMPLETED, result.errors
        assert (output_dir / "O'Reilly.txt").exists()
        assert result.hook("bare").stdout == "O'Reilly"

    @pytest.mark.asyncio
    async def test_output_path_with_spaces(self, hook_orchestrator, make_blueprint, tmp_path):
        output_dir = tmp_path / "My Projects" / "project"
        blueprint = _hook_blueprint(
            make_blueprint, [{"name": "absolute", "command": "touch {{ output_path }}/abs.txt"}]
        )
        result = await hook_orchestrator.generate(blueprint, {}, output_dir)
        assert result.status is GenerationStatus.COMPLETED, result.errors
        assert result.hook("absolute").succeeded
        assert (output_dir / "abs.txt").exists()


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_before_start_writes_nothing(self, orchestrator, feature_blueprint, output_dir):
        cancel = asyncio.Event()
        cancel.set()
        result = await orchestrator.generate(
            feature_blueprint, {"Name": "demo"}, output_dir, cancel=cancel
        )
        assert result.status is GenerationStatus.ABORTED
        assert result.errors_of_kind("cancelled")
        assert not output_dir.parent.exists()

    @pytest.mark.asyncio
    async def test_cancel_after_commit_keeps_files(self, make_blueprint, output_dir):
        cancel = asyncio.Event()

        class CancellingFileSystem(LocalFileSystem):
            def commit(self, staging_dir, output_dir, files):
                written = super().commit(staging_dir, output_dir, files)
                cancel.set()
                return written

        blueprint = _hook_blueprint(make_blueprint, [{"name": "touch", "command": "touch x"}])
        orchestrator = GenerationOrchestrator(
            EngineConfig(run_hooks=True), filesystem=CancellingFileSystem()
        )
        result = await orchestrator.generate(blueprint, {}, output_dir, cancel=cancel)
        assert result.status is GenerationStatus.ABORTED
        assert result.files_written == ["sub/a.txt"]
        assert (output_dir / "sub" / "a.txt").exists()
        assert result.hook("touch").status is HookStatus.SKIPPED
        assert not (output_dir / "x").exists()

    @pytest.mark.asyncio
    async def test_cancel_between_hooks(self, make_blueprint, output_dir):
        cancel = asyncio.Event()

        class CancellingRunner(HookRunner):
            async def run(self, hook, cwd):
                outcome = await super().run(hook, cwd)
                cancel.set()
                return outcome

        blueprint = _hook_blueprint(
            make_blueprint,
            [
                {"name": "first", "command": "touch first.txt"},
                {"name": "second", "command": "touch second.txt"},
            ],
        )
        orchestrator = GenerationOrchestrator(EngineConfig(), hook_runner=CancellingRunner())
        result = await orchestrator.generate(blueprint, {}, output_dir, cancel=cancel)
        assert result.status is GenerationStatus.ABORTED
        assert result.hook("first").succeeded
        assert result.hook("second").status is HookStatus.SKIPPED
        assert not (output_dir / "second.txt").exists()

    @pytest.mark.asyncio
    async def test_task_cancelled_mid_stage_waits_for_writers(self, make_blueprint, output_dir):
        started = threading.Event()
        events: list[str] = []

        class SlowFileSystem(LocalFileSystem):
            def write_file(self, path, content, executable=False):
                started.set()
                time.sleep(0.2)
                super().write_file(path, content, executable)
                events.append(f"write {path.name}")

            def remove_tree(self, path):
                events.append("remove")
                super().remove_tree(path)

        blueprint = make_blueprint(
            {
                "id": "slow",
                "files": [
                    {"source": "a.tmpl", "destination": "a.txt"},
                    {"source": "a.tmpl", "destination": "b.txt"},
                    {"source": "a.tmpl", "destination": "c.txt"},
                ],
            },
            {"a.tmpl": "a\n"},
        )
        orchestrator = GenerationOrchestrator(
            EngineConfig(run_hooks=False, max_render_workers=1), filesystem=SlowFileSystem()
        )
        task = asyncio.create_task(orchestrator.generate(blueprint, {}, output_dir))
        assert await asyncio.to_thread(started.wait, 5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert events == ["write a.txt", "remove"]
        assert not output_dir.exists()
        assert _leftovers(output_dir.parent) == []


# ---------------------------------------------------------------------------
# Other entry points
# ---------------------------------------------------------------------------


class TestEntryPoints:
    def test_plan(self, orchestrator, cli_blueprint, output_dir):
        plan = orchestrator.plan(cli_blueprint, {"ProjectName": "my-tool"}, output_dir)
        assert plan.blueprint_id == "cli-simple"
        assert plan.output_dir == output_dir.resolve()
        assert [f.destination for f in plan.files][:2] == ["go.mod", "main.go"]
        assert plan.variables["Logger"] == "slog"
        assert not output_dir.parent.exists()

    def test_plan_raises_for_bad_variables(self, orchestrator, cli_blueprint, output_dir):
        with pytest.raises(VariableResolutionError) as exc_info:
            orchestrator.plan(cli_blueprint, {}, output_dir)
        assert [e.variable for e in exc_info.value.errors] == ["ProjectName"]

    def test_injected_collaborators_are_kept(self):
        filesystem, runner = LocalFileSystem(), HookRunner(5)
        orchestrator = GenerationOrchestrator(
            filesystem=filesystem, hook_runner=runner, manifest_writers={}
        )
        assert orchestrator.filesystem is filesystem
        assert orchestrator.hook_runner is runner
        assert orchestrator.manifest_writers == {}

    def test_plan_raises_for_plan_errors(self, orchestrator, feature_blueprint, output_dir):
        output_dir.mkdir(parents=True)
        (output_dir / "keep.txt").write_text("keep", encoding="utf-8")
        with pytest.raises(PlanningError):
            orchestrator.plan(feature_blueprint, {"Name": "demo"}, output_dir)

    def test_render_in_memory(self, orchestrator, feature_blueprint):
        assert orchestrator.render_in_memory(feature_blueprint, {"Name": "demo", "Feature": True}) == {
            "README.md": b"# demo\nFeature enabled.\n",
            "demo/feature.txt": b"feature of demo\n",
        }

    @pytest.mark.asyncio
    async def test_generate_from_catalogue(self, orchestrator, blueprints_dir, output_dir):
        catalogue = BlueprintCatalogue(blueprints_dir)
        result = await orchestrator.generate_from_catalogue(
            catalogue, "feature-toggle", {"Name": "demo"}, output_dir
        )
        assert result.blueprint_id == "feature-toggle"
        assert result.success

    @pytest.mark.asyncio
    async def test_generate_from_catalogue_unknown(self, orchestrator, blueprints_dir, output_dir):
        with pytest.raises(BlueprintNotFoundError):
            await orchestrator.generate_from_catalogue(
                BlueprintCatalogue(blueprints_dir), "nope", {}, output_dir
            )

    @pytest.mark.asyncio
    async def test_concurrent_generations(self, orchestrator, feature_blueprint, tmp_path, snapshot):
        results = await asyncio.gather(
            *(
                orchestrator.generate(feature_blueprint, {"Name": f"p{i}"}, tmp_path / f"p{i}")
                for i in range(4)
            )
        )
        assert all(r.success for r in results)
        assert snapshot(tmp_path / "p3") == {"README.md": b"# p3\n"}
