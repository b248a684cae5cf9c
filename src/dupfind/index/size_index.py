import logging
from enum import StrEnum
from pathlib import Path
from typing import Iterator

from ..utils.hash_pool import HashTask

logger = logging.getLogger(__name__)


class SizeGroupState(StrEnum):
    """Hashing state of a size group.

    A size that has never been observed has no group at all (the empty state).
    """
    SINGLE = 'single'
    HASHED = 'hashed'


class SizeGroup:
    """Files sharing one size together with their incremental hashing state.

    While SINGLE, the group holds one path that has not been hashed. The first
    collision moves the group to HASHED, after which every member is hashed and
    ends up either in a digest bucket or in the excluded list.
    """

    def __init__(self, size: int, first_path: Path):
        self._size = size
        self._state = SizeGroupState.SINGLE
        self._first_path: Path | None = first_path
        self._buckets: dict[str, list[Path]] = {}
        self._pending: set[Path] = set()
        self._excluded: dict[Path, Exception] = {}

    @property
    def size(self) -> int:
        return self._size

    @property
    def state(self) -> SizeGroupState:
        return self._state

    @property
    def first_path(self) -> Path | None:
        """The only member of a SINGLE group, None once hashing started."""
        return self._first_path

    @property
    def buckets(self) -> dict[str, list[Path]]:
        return self._buckets

    @property
    def pending(self) -> frozenset[Path]:
        return frozenset(self._pending)

    @property
    def excluded(self) -> dict[Path, Exception]:
        return self._excluded

    def __repr__(self):
        if self._state is SizeGroupState.SINGLE:
            return f"SizeGroup(size={self._size}, single={self._first_path})"
        return f"SizeGroup(size={self._size}, buckets={len(self._buckets)}, pending={len(self._pending)})"

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def start_hashing(self) -> Path:
        """Move a SINGLE group to HASHED and return its first path, now pending.

        Raises:
            ValueError: The group is already being hashed
        """
        if self._state is not SizeGroupState.SINGLE:
            raise ValueError(f"size group {self._size} is already being hashed")
        first_path = self._first_path
        self._state = SizeGroupState.HASHED
        self._first_path = None
        self._pending.add(first_path)
        return first_path

    def add_pending(self, path: Path):
        if self._state is not SizeGroupState.HASHED:
            raise ValueError(f"size group {self._size} is not being hashed")
        self._pending.add(path)

    def place(self, path: Path, digest: str):
        """Move a pending path into the bucket of its digest."""
        self._settle(path)
        self._buckets.setdefault(digest, []).append(path)

    def exclude(self, path: Path, error: Exception):
        """Move a pending path out of the group for good."""
        self._settle(path)
        self._excluded[path] = error

    def _settle(self, path: Path):
        try:
            self._pending.remove(path)
        except KeyError:
            raise KeyError(f"no hash pending for {path} in size group {self._size}") from None


class SizeIndex:
    """Groups observed files by size, then by content digest.

    The index decides which files need hashing at all: a file whose size has not
    been seen before is kept without being read. Only when a second file of the
    same size arrives are both hashed, and every later file of that size is hashed
    on arrival.

    SizeIndex does no locking. It must be mutated from a single owner (the
    coordinator); the hash workers never see it.
    """

    def __init__(self):
        self._groups: dict[int, SizeGroup] = {}
        self._observed: set[Path] = set()
        self._hashed = 0

    def observe(self, path: Path, size: int) -> list[HashTask]:
        """Record a file and return the hash tasks its arrival makes necessary.

        Returns:
            An empty list for the first file of a size; the backfill task for the
            first file followed by the task for ``path`` on the first collision;
            a single task for ``path`` afterwards.
        """
        if path in self._observed:
            logger.debug(f"Ignoring repeated observation of {path}")
            return []
        self._observed.add(path)

        group = self._groups.get(size)
        if group is None:
            self._groups[size] = SizeGroup(size, path)
            return []

        tasks = []
        if group.state is SizeGroupState.SINGLE:
            first_path = group.start_hashing()
            logger.debug(f"Size {size} collided, hashing {first_path} retroactively")
            tasks.append(HashTask(first_path, size))

        group.add_pending(path)
        tasks.append(HashTask(path, size))
        return tasks

    def apply_hash_result(self, size: int, path: Path, digest: str):
        """Place a hashed path into the digest bucket of its size group.

        Raises:
            KeyError: No hash task is pending for ``path`` in the group at ``size``
        """
        group = self._get_hashed_group(size)
        group.place(path, digest)
        self._hashed += 1

    def exclude(self, size: int, path: Path, error: Exception):
        """Drop a path whose hash failed; it will not appear in any bucket.

        Raises:
            KeyError: No hash task is pending for ``path`` in the group at ``size``
        """
        group = self._get_hashed_group(size)
        group.exclude(path, error)

    def get(self, size: int) -> SizeGroup | None:
        return self._groups.get(size)

    def groups(self) -> Iterator[SizeGroup]:
        """Iterate size groups by ascending size."""
        for size in sorted(self._groups):
            yield self._groups[size]

    def excluded(self) -> Iterator[tuple[Path, Exception]]:
        for group in self.groups():
            yield from group.excluded.items()

    @property
    def observed_count(self) -> int:
        return len(self._observed)

    @property
    def hashed_count(self) -> int:
        return self._hashed

    @property
    def pending_count(self) -> int:
        return sum(group.pending_count for group in self._groups.values())

    def __len__(self):
        return len(self._groups)

    def _get_hashed_group(self, size: int) -> SizeGroup:
        group = self._groups.get(size)
        if group is None or group.state is not SizeGroupState.HASHED:
            raise KeyError(f"size group {size} is not being hashed")
        return group
