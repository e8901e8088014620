"""Staging directory and atomic commit.

Rendered files are first written into a private staging directory created
beside the output directory (same parent, so normally the same filesystem).
``commit`` then moves the whole staged tree into place.  Readers of the
output directory see either none of the generated files or all of them.
"""

from __future__ import annotations

import errno
import os
import shutil
import stat
import tempfile
from pathlib import Path

from ..errors import CommitError, DestinationNotEmpty
from ..utils import print_warning


def _make_executable(path: Path) -> None:
    """Set the executable bit on a file."""
    current = path.stat().st_mode
    path.chmod(current | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def _is_empty_dir(path: Path) -> bool:
    return path.is_dir() and not any(path.iterdir())


class LocalFileSystem:
    """Filesystem operations used by the Stage and Commit steps."""

    # -- Checks ------------------------------------------------------------

    def check_output(self, output_dir: Path, force: bool = False) -> None:
        """Refuse a non-empty (or non-directory) output path unless *force*.

        Raises:
            DestinationNotEmpty: When the output exists and has content.
        """
        if not output_dir.exists():
            return
        if not output_dir.is_dir():
            raise DestinationNotEmpty(str(output_dir))
        if not force and not _is_empty_dir(output_dir):
            raise DestinationNotEmpty(str(output_dir))

    # -- Staging -----------------------------------------------------------

    def create_staging(self, output_dir: Path, prefix: str) -> Path:
        """Create a private staging directory next to *output_dir*."""
        parent = output_dir.parent
        parent.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=prefix, dir=parent))

    def write_file(self, path: Path, content: bytes, executable: bool = False) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        if executable:
            _make_executable(path)

    def remove_tree(self, path: Path) -> None:
        """Best-effort removal of a staging or backup directory."""
        if not path.exists():
            return
        try:
            shutil.rmtree(path)
        except OSError as exc:
            print_warning(f"Could not remove {path}: {exc}")

    # -- Commit ------------------------------------------------------------

    def commit(self, staging_dir: Path, output_dir: Path, files: list[str]) -> list[str]:
        """Move the staged *files* into *output_dir*.

        When the destination is absent or empty the staging directory is
        renamed into place in one step.  Otherwise (forced into a populated
        directory, or the rename crosses devices) each file is copied in
        order; existing files are backed up first and every change is rolled
        back if any copy fails.

        Returns:
            The committed destinations, in *files* order.

        Raises:
            CommitError: After rolling back whatever was changed.
        """
        if not output_dir.exists() or _is_empty_dir(output_dir):
            try:
                self._rename_into_place(staging_dir, output_dir)
                return list(files)
            except OSError as exc:
                if exc.errno != errno.EXDEV:
                    raise CommitError(
                        f"cannot move staged files into {output_dir}: {exc}",
                        subject=str(output_dir),
                    ) from exc
        return self._copy_into_place(staging_dir, output_dir, files)

    @staticmethod
    def _rename_into_place(staging_dir: Path, output_dir: Path) -> None:
        existed = output_dir.exists()
        if existed:
            output_dir.rmdir()
        try:
            os.rename(staging_dir, output_dir)
        except OSError:
            if existed:
                output_dir.mkdir(exist_ok=True)
            raise
        # mkdtemp creates the directory 0700; give it the usual umask-derived mode.
        umask = os.umask(0)
        os.umask(umask)
        output_dir.chmod(0o777 & ~umask)

    def _copy_into_place(
        self, staging_dir: Path, output_dir: Path, files: list[str]
    ) -> list[str]:
        backup_dir = Path(tempfile.mkdtemp(prefix=".blueprint-backup-", dir=output_dir.parent))
        created_dirs: list[Path] = []
        # (destination, backup copy or None when the file did not exist)
        applied: list[tuple[Path, Path | None]] = []
        try:
            if not output_dir.exists():
                output_dir.mkdir(parents=True)
                created_dirs.append(output_dir)
            for relative in files:
                source = staging_dir / relative
                target = output_dir / relative
                for parent in reversed(target.relative_to(output_dir).parents):
                    directory = output_dir / parent
                    if not directory.exists():
                        directory.mkdir()
                        created_dirs.append(directory)
                backup: Path | None = None
                if target.exists():
                    backup = backup_dir / relative
                    backup.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(target, backup)
                applied.append((target, backup))
                shutil.copy2(source, target)
        except OSError as exc:
            self._rollback(applied, created_dirs)
            raise CommitError(
                f"cannot copy staged files into {output_dir}: {exc}", subject=str(output_dir)
            ) from exc
        finally:
            self.remove_tree(backup_dir)
        return list(files)

    @staticmethod
    def _rollback(applied: list[tuple[Path, Path | None]], created_dirs: list[Path]) -> None:
        for target, backup in reversed(applied):
            try:
                if backup is not None:
                    shutil.copy2(backup, target)
                elif target.exists():
                    target.unlink()
            except OSError as exc:
                print_warning(f"Rollback of {target} failed: {exc}")
        for directory in reversed(created_dirs):
            if _is_empty_dir(directory):
                directory.rmdir()
