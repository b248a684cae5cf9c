"""DuplicateReport: the duplicate buckets of a finished size index."""

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from ..index.size_index import SizeIndex, SizeGroupState


@dataclass(frozen=True)
class DuplicateGroup:
    """Files of one size whose contents hash to the same digest.

    Attributes:
        size: File size in bytes shared by all paths
        digest: Lowercase hex content digest
        paths: At least two paths, sorted by their string form
    """
    size: int
    digest: str
    paths: tuple[Path, ...]

    @property
    def redundant_size(self) -> int:
        """Bytes that would be freed by keeping a single copy."""
        return self.size * (len(self.paths) - 1)


class DuplicateReport:
    """Read-only view of the duplicate buckets in a SizeIndex.

    Groups are ordered by ascending size, then ascending digest, and the paths of
    each group by their string form, so the report does not depend on scan order
    or on the order in which hash results arrived.
    """

    def __init__(self, groups: list[DuplicateGroup]):
        self._groups = sorted(groups, key=lambda g: (g.size, g.digest))

    @classmethod
    def from_index(cls, index: SizeIndex) -> "DuplicateReport":
        """Collect every digest bucket holding two or more paths.

        Groups still holding a single unhashed file and singleton buckets are
        dropped.
        """
        groups = []
        for size_group in index.groups():
            if size_group.state is not SizeGroupState.HASHED:
                continue
            for digest, paths in size_group.buckets.items():
                if len(paths) >= 2:
                    groups.append(DuplicateGroup(size_group.size, digest, tuple(sorted(paths, key=str))))
        return cls(groups)

    def __iter__(self) -> Iterator[DuplicateGroup]:
        return iter(self._groups)

    def __len__(self):
        return len(self._groups)

    def __bool__(self):
        return bool(self._groups)

    @property
    def buckets(self) -> dict[int, dict[str, list[Path]]]:
        """The report as ``size -> digest -> paths``, keys in report order."""
        result: dict[int, dict[str, list[Path]]] = {}
        for group in self._groups:
            result.setdefault(group.size, {})[group.digest] = list(group.paths)
        return result

    @property
    def duplicate_files(self) -> int:
        """Number of files that belong to some duplicate group."""
        return sum(len(group.paths) for group in self._groups)

    @property
    def redundant_size(self) -> int:
        return sum(group.redundant_size for group in self._groups)
