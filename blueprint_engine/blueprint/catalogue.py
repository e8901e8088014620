"""A directory of blueprints addressable by id."""

from __future__ import annotations

from pathlib import Path
from typing import Union

from ..errors import BlueprintLoadError, BlueprintNotFoundError
from .loader import BlueprintLoader, CachingLoader, find_manifest
from .models import Blueprint


class BlueprintCatalogue:
    """Every blueprint found one level below *root*.

    Each subdirectory holding a manifest is one blueprint.  The catalogue is
    an ordinary object owned by its caller; two catalogues never share state
    unless they are handed the same loader.
    """

    def __init__(
        self,
        root: str | Path,
        loader: Union[BlueprintLoader, CachingLoader, None] = None,
    ) -> None:
        self.root = Path(root)
        self.loader = loader if loader is not None else CachingLoader()
        self._index: dict[str, Blueprint] | None = None

    def _load_index(self) -> dict[str, Blueprint]:
        if self._index is not None:
            return self._index
        if not self.root.is_dir():
            raise BlueprintLoadError(str(self.root), ["catalogue directory does not exist"])

        index: dict[str, Blueprint] = {}
        for directory in sorted(p for p in self.root.iterdir() if p.is_dir()):
            if find_manifest(directory) is None:
                continue
            blueprint = self.loader.load(directory)
            if blueprint.id in index:
                raise BlueprintLoadError(
                    str(directory),
                    [f"blueprint id {blueprint.id!r} is also used by {index[blueprint.id].root}"],
                )
            index[blueprint.id] = blueprint
        self._index = index
        return index

    def list(self) -> list[Blueprint]:
        """All blueprints, sorted by type and then id."""
        return sorted(self._load_index().values(), key=lambda b: (b.type, b.id))

    def ids(self) -> list[str]:
        return [b.id for b in self.list()]

    def get(self, blueprint_id: str) -> Blueprint:
        """Return the blueprint with *blueprint_id*.

        Raises:
            BlueprintNotFoundError: Listing the ids that do exist.
        """
        index = self._load_index()
        if blueprint_id not in index:
            raise BlueprintNotFoundError(blueprint_id, sorted(index))
        return index[blueprint_id]

    def get_by_type(self, blueprint_type: str) -> list[Blueprint]:
        return [b for b in self.list() if b.type == blueprint_type]

    def exists(self, blueprint_id: str) -> bool:
        return blueprint_id in self._load_index()

    def refresh(self) -> None:
        """Forget the index (and the loader's cache) so the next call rescans."""
        self._index = None
        if isinstance(self.loader, CachingLoader):
            self.loader.clear()
