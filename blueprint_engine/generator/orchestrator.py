"""Generation orchestrator.

Drives one blueprint through the generation state machine::

    Resolve -> Plan -> Stage -> Commit -> Dependencies -> Hooks -> Report

Every stage either succeeds or records ``ErrorDetail`` entries on the
result.  Nothing touches the output directory before Commit, and Commit
moves a fully rendered staging tree into place in one step, so a failed or
cancelled run never leaves a half-written project behind.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional

from rich.markup import escape

from ..blueprint.catalogue import BlueprintCatalogue
from ..blueprint.models import Blueprint, HookSpec
from ..config import EngineConfig
from ..errors import (
    BlueprintEngineError,
    CommitError,
    DependencyError,
    DestinationCollision,
    GenerationCancelled,
    HookError,
    PlanningError,
    RenderError,
    UnsafeDestination,
)
from ..expressions import Expression
from ..renderer import TemplateRenderer, safe_relative_path
from ..utils import console, print_error, print_stage, print_success
from ..variables import ResolvedVariables, VariableResolver
from .dependencies import MANIFEST_WRITERS, ManifestWriter, merge_dependencies
from .hooks import HookRunner, build_argv
from .results import (
    ErrorDetail,
    GenerationPlan,
    GenerationResult,
    GenerationStatus,
    HookOutcome,
    HookStatus,
    PlannedFile,
    PlannedHook,
)
from .staging import LocalFileSystem


class GenerationOrchestrator:
    """Turns a ``Blueprint`` plus variable overrides into a project on disk.

    Collaborators are injected so tests can swap any of them; the defaults
    are the real implementations.  An orchestrator holds no per-run state
    and may run several generations concurrently.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        renderer: TemplateRenderer | None = None,
        resolver: VariableResolver | None = None,
        hook_runner: HookRunner | None = None,
        filesystem: LocalFileSystem | None = None,
        manifest_writers: Mapping[str, ManifestWriter] | None = None,
    ) -> None:
        self.config = config if config is not None else EngineConfig()
        self.renderer = renderer if renderer is not None else TemplateRenderer()
        self.resolver = resolver if resolver is not None else VariableResolver(self.renderer)
        self.hook_runner = (
            hook_runner if hook_runner is not None else HookRunner(self.config.hook_timeout)
        )
        self.filesystem = filesystem if filesystem is not None else LocalFileSystem()
        self.manifest_writers = dict(
            MANIFEST_WRITERS if manifest_writers is None else manifest_writers
        )

    # -- Public API --------------------------------------------------------

    async def generate(
        self,
        blueprint: Blueprint,
        overrides: Optional[Mapping[str, Any]],
        output_dir: str | Path,
        *,
        cancel: asyncio.Event | None = None,
        dry_run: bool | None = None,
    ) -> GenerationResult:
        """Run the full pipeline and return its ledger.

        Args:
            blueprint: A loaded blueprint.
            overrides: User-supplied variable values (may be ``None``).
            output_dir: Directory the project is generated into.
            cancel: Optional event; once set, the run stops at the next stage
                boundary (or before the next hook).
            dry_run: Overrides ``config.dry_run`` for this call.

        Returns:
            A ``GenerationResult``.  Failures are reported on the result, not
            raised; only ``asyncio.CancelledError`` of the calling task
            propagates.
        """
        started = time.monotonic()
        output_dir = Path(output_dir).resolve()
        dry_run = self.config.dry_run if dry_run is None else dry_run
        errors: list[ErrorDetail] = []
        ledger: dict[str, Any] = {}

        def finish(status: GenerationStatus) -> GenerationResult:
            result = GenerationResult(
                blueprint_id=blueprint.id,
                output_dir=str(output_dir),
                status=status,
                dry_run=dry_run,
                errors=errors,
                duration_seconds=time.monotonic() - started,
                **ledger,
            )
            self._announce_result(result)
            return result

        def cancelled(stage: str) -> bool:
            if cancel is None or not cancel.is_set():
                return False
            errors.append(
                ErrorDetail.from_exception(
                    GenerationCancelled(f"Generation cancelled before {stage}"), stage
                )
            )
            return True

        # 1. Resolve
        self._announce("resolve", blueprint.id)
        variables, variable_errors = self.resolver.resolve(
            blueprint.variables, overrides, builtins=blueprint.builtins()
        )
        if variables is None:
            errors.extend(ErrorDetail.from_exception(e, "resolve") for e in variable_errors)
            return finish(GenerationStatus.ABORTED)
        ledger["variables"] = variables.to_dict()
        if cancelled("plan"):
            return finish(GenerationStatus.ABORTED)

        # 2. Plan
        self._announce("plan", str(output_dir))
        plan, plan_errors = self._build_plan(blueprint, variables, output_dir)
        if plan is None:
            errors.extend(ErrorDetail.from_exception(e, "plan") for e in plan_errors)
            return finish(GenerationStatus.ABORTED)
        ledger["files_planned"] = [f.destination for f in plan.files]
        ledger["dependencies"] = plan.dependencies

        if dry_run:
            ledger["hooks"] = [HookRunner.skipped(h, "dry run") for h in plan.hooks]
            return finish(GenerationStatus.COMPLETED)
        if cancelled("stage"):
            return finish(GenerationStatus.ABORTED)

        # 3. Stage and 4. Commit
        staging_dir: Path | None = None
        try:
            try:
                staging_dir = await asyncio.to_thread(
                    self.filesystem.create_staging, output_dir, self.config.staging_prefix
                )
            except OSError as exc:
                errors.append(ErrorDetail.from_exception(exc, "stage"))
                return finish(GenerationStatus.ABORTED)

            self._announce("stage", f"{len(plan.files)} file(s)")
            stage_errors = await self._stage(blueprint, plan, staging_dir)
            if stage_errors:
                errors.extend(stage_errors)
                return finish(GenerationStatus.PARTIALLY_FAILED)
            if cancelled("commit"):
                return finish(GenerationStatus.ABORTED)

            self._announce("commit", str(output_dir))
            try:
                ledger["files_written"] = await asyncio.to_thread(
                    self.filesystem.commit, staging_dir, output_dir, ledger["files_planned"]
                )
            except (CommitError, OSError) as exc:
                errors.append(ErrorDetail.from_exception(exc, "commit"))
                return finish(GenerationStatus.ABORTED)
        finally:
            if staging_dir is not None:
                await asyncio.to_thread(self.filesystem.remove_tree, staging_dir)

        status = GenerationStatus.COMPLETED
        if cancelled("dependencies"):
            ledger["hooks"] = [HookRunner.skipped(h, "cancelled") for h in plan.hooks]
            return finish(GenerationStatus.ABORTED)

        # 5. Dependencies
        if plan.dependencies:
            self._announce("dependencies", f"{len(plan.dependencies)} module(s)")
            try:
                await self._write_dependencies(blueprint, plan)
            except DependencyError as exc:
                errors.append(ErrorDetail.from_exception(exc, "dependencies"))
                status = GenerationStatus.PARTIALLY_FAILED

        # 6. Hooks
        outcomes: list[HookOutcome] = []
        ledger["hooks"] = outcomes
        if not self.config.run_hooks:
            outcomes.extend(HookRunner.skipped(h, "hooks disabled") for h in plan.hooks)
            return finish(status)

        if plan.hooks:
            self._announce("hooks", f"{len(plan.hooks)} hook(s)")
        for index, hook in enumerate(plan.hooks):
            if cancelled("hooks"):
                outcomes.extend(HookRunner.skipped(h, "cancelled") for h in plan.hooks[index:])
                return finish(GenerationStatus.ABORTED)

            outcome = await self.hook_runner.run(hook, output_dir / hook.work_dir)
            outcomes.append(outcome)
            if outcome.succeeded:
                continue

            error = HookError(hook.name, _describe_failure(outcome), required=hook.required)
            errors.append(ErrorDetail.from_exception(error, "hooks"))
            if hook.required:
                status = GenerationStatus.PARTIALLY_FAILED
                outcomes.extend(
                    HookRunner.skipped(h, f"required hook '{hook.name}' failed")
                    for h in plan.hooks[index + 1:]
                )
                break

        # 7. Report
        return finish(status)

    def plan(
        self,
        blueprint: Blueprint,
        overrides: Optional[Mapping[str, Any]],
        output_dir: str | Path,
    ) -> GenerationPlan:
        """Resolve variables and build the work list without writing anything.

        Raises:
            VariableResolutionError: When any variable fails to resolve.
            PlanningError: With every planning failure.
        """
        output_dir = Path(output_dir).resolve()
        variables = self.resolver.resolve_or_raise(
            blueprint.variables, overrides, builtins=blueprint.builtins()
        )
        plan, errors = self._build_plan(blueprint, variables, output_dir)
        if plan is None:
            raise PlanningError(errors)
        return plan

    def render_in_memory(
        self, blueprint: Blueprint, overrides: Optional[Mapping[str, Any]] = None
    ) -> dict[str, bytes]:
        """Render every included file and return ``{destination: content}``.

        Used for previews and tests.  The output directory is not consulted
        and hooks and dependencies are not run.

        Raises:
            VariableResolutionError, PlanningError, RenderError.
        """
        variables = self.resolver.resolve_or_raise(
            blueprint.variables, overrides, builtins=blueprint.builtins()
        )
        plan, errors = self._build_plan(
            blueprint, variables, Path.cwd() / blueprint.id, check_output=False
        )
        if plan is None:
            raise PlanningError(errors)
        context = variables.context(blueprint.builtins())
        return {f.destination: self._render_file(blueprint, f, context) for f in plan.files}

    async def generate_from_catalogue(
        self,
        catalogue: BlueprintCatalogue,
        blueprint_id: str,
        overrides: Optional[Mapping[str, Any]],
        output_dir: str | Path,
        **kwargs: Any,
    ) -> GenerationResult:
        """Look *blueprint_id* up in *catalogue* and :meth:`generate` it.

        Raises:
            BlueprintNotFoundError: When the catalogue has no such blueprint.
        """
        blueprint = catalogue.get(blueprint_id)
        return await self.generate(blueprint, overrides, output_dir, **kwargs)

    # -- Plan --------------------------------------------------------------

    def _build_plan(
        self,
        blueprint: Blueprint,
        variables: ResolvedVariables,
        output_dir: Path,
        check_output: bool = True,
    ) -> tuple[GenerationPlan | None, list[BlueprintEngineError]]:
        errors: list[BlueprintEngineError] = []
        context = variables.context(blueprint.builtins())

        files: list[PlannedFile] = []
        sources_by_destination: dict[str, list[str]] = {}
        for entry in blueprint.files:
            try:
                if not self._included(entry.condition, context):
                    continue
                destination = self.renderer.render_path(
                    entry.destination, context, name=f"destination of {entry.source}"
                ).as_posix()
            except BlueprintEngineError as exc:
                errors.append(exc)
                continue
            sources_by_destination.setdefault(destination, []).append(entry.source)
            files.append(
                PlannedFile(
                    source=entry.source, destination=destination, executable=entry.executable
                )
            )
        for destination, sources in sources_by_destination.items():
            if len(sources) > 1:
                errors.append(DestinationCollision(destination, sources))

        dependencies = []
        try:
            included = [d for d in blueprint.dependencies if self._included(d.condition, context)]
            dependencies = merge_dependencies(included)
        except BlueprintEngineError as exc:
            errors.append(exc)
        if dependencies:
            try:
                safe_relative_path(blueprint.manifest.resolved_path)
            except UnsafeDestination as exc:
                errors.append(exc)

        hooks: list[PlannedHook] = []
        hook_context = {**context, "output_path": str(output_dir)}
        for hook in blueprint.hooks:
            try:
                if not self._included(hook.condition, hook_context):
                    continue
                hooks.append(self._plan_hook(hook, hook_context, output_dir))
            except BlueprintEngineError as exc:
                errors.append(exc)

        if check_output:
            try:
                self.filesystem.check_output(output_dir, force=self.config.force)
            except BlueprintEngineError as exc:
                errors.append(exc)

        if errors:
            return None, errors
        plan = GenerationPlan(
            blueprint_id=blueprint.id,
            output_dir=output_dir,
            variables=variables,
            files=files,
            dependencies=dependencies,
            hooks=hooks,
        )
        return plan, []

    @staticmethod
    def _included(condition: Expression | None, context: Mapping[str, Any]) -> bool:
        return condition is None or condition.evaluate(context)

    def _plan_hook(self, hook: HookSpec, context: Mapping[str, Any], output_dir: Path) -> PlannedHook:
        work_dir = self.renderer.render_text(
            hook.work_dir, context, name=f"work_dir of hook {hook.name}"
        )
        try:
            argv = build_argv(
                self.renderer, hook.command, hook.args, context, shell=hook.shell, name=hook.name
            )
        except ValueError as exc:
            raise HookError(hook.name, f"cannot parse command {hook.command!r}: {exc}") from exc
        if not argv or not argv[0]:
            raise HookError(hook.name, "command renders to an empty string")
        return PlannedHook(
            name=hook.name,
            argv=argv,
            work_dir=_hook_work_dir(work_dir, output_dir),
            required=hook.required,
            timeout=hook.timeout,
            env=dict(hook.env),
        )

    # -- Stage -------------------------------------------------------------

    async def _stage(
        self, blueprint: Blueprint, plan: GenerationPlan, staging_dir: Path
    ) -> list[ErrorDetail]:
        context = plan.variables.context(blueprint.builtins())
        semaphore = asyncio.Semaphore(self.config.max_render_workers)

        def render_and_write(file: PlannedFile) -> None:
            content = self._render_file(blueprint, file, context)
            self.filesystem.write_file(staging_dir / file.destination, content, file.executable)

        stopping = False

        async def stage_one(file: PlannedFile) -> None:
            async with semaphore:
                if stopping:
                    return
                await asyncio.to_thread(render_and_write, file)

        tasks = [asyncio.create_task(stage_one(f)) for f in plan.files]
        try:
            results = await asyncio.shield(asyncio.gather(*tasks, return_exceptions=True))
        except asyncio.CancelledError:
            # Worker threads cannot be interrupted; wait for the ones already
            # writing so nothing lands in staging after it is removed.
            stopping = True
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        errors: list[ErrorDetail] = []
        for outcome in results:
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, Exception):
                errors.append(ErrorDetail.from_exception(outcome, "stage"))
        return errors

    def _render_file(
        self, blueprint: Blueprint, file: PlannedFile, context: Mapping[str, Any]
    ) -> bytes:
        template = blueprint.templates.get(file.source)
        if template is None:
            raise RenderError(file.source, "template text was not loaded")
        return self.renderer.render(template, context, name=file.source)

    # -- Dependencies ------------------------------------------------------

    async def _write_dependencies(self, blueprint: Blueprint, plan: GenerationPlan) -> None:
        manifest = blueprint.manifest
        writer = self.manifest_writers.get(manifest.format)
        if writer is None:
            raise DependencyError(
                f"no writer for manifest format '{manifest.format}'", subject=manifest.format
            )
        path = plan.output_dir / safe_relative_path(manifest.resolved_path)
        await asyncio.to_thread(writer.write, path, plan.dependencies)

    # -- Console -----------------------------------------------------------

    def _announce(self, stage: str, detail: str = "") -> None:
        if self.config.verbose:
            print_stage(stage, detail)

    def _announce_result(self, result: GenerationResult) -> None:
        if not self.config.verbose:
            return
        if result.status is GenerationStatus.COMPLETED:
            verb = "Planned" if result.dry_run else "Generated"
            count = len(result.files_planned if result.dry_run else result.files_written)
            print_success(f"{verb} {count} file(s) from '{result.blueprint_id}'")
        else:
            print_error(
                f"Generation of '{result.blueprint_id}' {result.status.value} "
                f"with {len(result.errors)} error(s)"
            )
        for error in result.errors:
            console.print(f"  [red]-[/red] {error.stage}: {escape(error.message)}", highlight=False)


def _hook_work_dir(rendered: str, output_dir: Path) -> str:
    rendered = rendered.strip()
    if rendered in ("", "."):
        return ""
    candidate = Path(rendered)
    if candidate.is_absolute():
        try:
            relative = candidate.relative_to(output_dir)
        except ValueError:
            raise UnsafeDestination(rendered, "hook working directory is outside the output") from None
        return "" if relative == Path(".") else relative.as_posix()
    return safe_relative_path(rendered).as_posix()


def _describe_failure(outcome: HookOutcome) -> str:
    if outcome.status is HookStatus.TIMED_OUT:
        return outcome.stderr or "timed out"
    detail = outcome.stderr or outcome.stdout
    if outcome.returncode is None:
        return detail or "could not be started"
    message = f"exit code {outcome.returncode}"
    return f"{message}: {detail}" if detail else message
