"""Rich console rendering of a ``GenerationResult``."""

from __future__ import annotations

from rich.markup import escape
from rich.table import Table

from ..utils import console, format_duration, print_error, print_success, print_summary_table, print_warning
from .results import GenerationResult, GenerationStatus, HookStatus


_HOOK_STYLES: dict[HookStatus, str] = {
    HookStatus.SUCCEEDED: "green",
    HookStatus.FAILED: "red",
    HookStatus.TIMED_OUT: "yellow",
    HookStatus.SKIPPED: "dim",
}


def print_generation_result(result: GenerationResult, show_files: bool = True) -> None:
    """Print the summary, files, dependencies, hooks and errors of *result*."""
    written = result.files_planned if result.dry_run else result.files_written
    print_summary_table(
        {
            "Blueprint": result.blueprint_id,
            "Output": result.output_dir,
            "Status": result.status.value + (" (dry run)" if result.dry_run else ""),
            "Files": str(len(written)),
            "Dependencies": str(len(result.dependencies)),
            "Hooks": str(len(result.hooks)),
            "Duration": format_duration(result.duration_seconds),
        },
        title="Generation",
    )

    if show_files and written:
        table = Table(title="Planned files" if result.dry_run else "Files written", header_style="bold cyan")
        table.add_column("Destination")
        for destination in written:
            table.add_row(escape(destination))
        console.print(table)

    if result.dependencies:
        table = Table(title="Dependencies", header_style="bold cyan")
        table.add_column("Module")
        table.add_column("Version")
        table.add_column("Pinned", justify="center")
        for dep in result.dependencies:
            table.add_row(escape(dep.module), escape(dep.version or "-"), "yes" if dep.pinned else "")
        console.print(table)

    if result.hooks:
        table = Table(title="Hooks", header_style="bold cyan")
        table.add_column("Hook")
        table.add_column("Status")
        table.add_column("Exit", justify="right")
        table.add_column("Duration", justify="right")
        for hook in result.hooks:
            style = _HOOK_STYLES[hook.status]
            table.add_row(
                escape(hook.name),
                f"[{style}]{hook.status.value}[/{style}]",
                "" if hook.returncode is None else str(hook.returncode),
                format_duration(hook.duration_seconds),
            )
        console.print(table)

    for error in result.errors:
        subject = f" [{error.subject}]" if error.subject else ""
        print_error(escape(f"{error.stage}/{error.kind}{subject}: {error.message}"))

    if result.status is GenerationStatus.COMPLETED:
        print_success("Generation completed")
    elif result.status is GenerationStatus.PARTIALLY_FAILED:
        print_warning("Generation partially failed")
    else:
        print_error("Generation aborted")
