import functools
import logging
import os
import stat
from pathlib import Path
from typing import Generator, Iterator, NamedTuple

from ..errors import RootPathError, TraversalEntryError

logger = logging.getLogger(__name__)


class FileRecord(NamedTuple):
    """A regular file found by the scanner."""
    path: Path
    size: int


class FileContext:
    """Context object for a file or directory during traversal.

    The stat result is taken without following symlinks unless it was supplied at
    construction, which is how a followed symlink carries its target's metadata.
    """
    def __init__(self, parent, name: str | None, path: Path | None = None, st: os.stat_result | None = None):
        self._parent: FileContext | None = parent
        self._name: str | None = name
        self._stat: os.stat_result | None = st
        self._path: Path | None = path

    @property
    def name(self) -> str | None:
        return self._name

    @property
    def parent(self) -> 'FileContext':
        if self._parent is None:
            raise LookupError("no parent")

        return self._parent

    @property
    def stat(self) -> os.stat_result:
        if self._stat is None:
            if self._path is None:
                raise LookupError("stat not available and path not provided")
            self._stat = self._path.stat(follow_symlinks=False)
        return self._stat

    @functools.cached_property
    def relative_path(self) -> Path | None:
        """Path relative to the scan root, None for the root itself."""
        if self._name is None:
            return None

        if self._parent is None:
            return Path(self._name)

        parent_path = self._parent.relative_path
        if parent_path is None:
            return Path(self._name)

        return parent_path / self._name

    def is_file(self):
        return stat.S_ISREG(self.stat.st_mode)

    def is_dir(self):
        return stat.S_ISDIR(self.stat.st_mode)

    def is_symlink(self):
        return stat.S_ISLNK(self.stat.st_mode)


def walk(path: Path, parent: FileContext,
         visited: set[tuple[int, int]]) -> Generator[tuple[Path, FileContext], None | bool | FileContext, None]:
    """Recursively traverse a directory in name order.

    The consumer may send False to skip descending into the entry just yielded, or
    a FileContext to substitute for it. Entries whose metadata cannot be read are
    logged and skipped. ``visited`` holds (device, inode) of the directories entered
    so far and breaks cycles introduced by followed symlinks.
    """
    try:
        children = sorted(path.iterdir())
    except OSError as e:
        logger.warning(str(TraversalEntryError(path, e)))
        return

    child: Path
    for child in children:
        context = FileContext(parent, child.name, path=child)
        try:
            _ = context.stat
        except OSError as e:
            logger.warning(str(TraversalEntryError(child, e)))
            continue

        substitute_context = yield child, context

        if substitute_context is False:
            continue
        elif substitute_context is not True and substitute_context is not None:
            context = substitute_context

        if context.is_dir():
            key = (context.stat.st_dev, context.stat.st_ino)
            if key in visited:
                logger.info(f"Skipping {child}: directory already visited")
                continue
            visited.add(key)
            yield from walk(child, context, visited)


class WalkPolicy(NamedTuple):
    """Policy controlling filesystem traversal behavior.

    Attributes:
        excluded_paths: Relative paths (from the scan root) left out of the traversal
        follow_symlinks: Follow symlinks whose final target lies outside the scan root
        include_empty: Report zero-byte files from scan_files()
    """
    excluded_paths: frozenset[Path] = frozenset()
    follow_symlinks: bool = False
    include_empty: bool = True


def validate_root(path: Path) -> Path:
    """Check that ``path`` is a readable directory.

    Raises:
        RootPathError: The path does not exist, is not a directory, or cannot be listed
    """
    try:
        st = path.stat()
    except FileNotFoundError:
        raise RootPathError(path, "no such directory") from None
    except OSError as e:
        raise RootPathError(path, e.strerror or str(e)) from e

    if not stat.S_ISDIR(st.st_mode):
        raise RootPathError(path, "not a directory")

    try:
        with os.scandir(path):
            pass
    except OSError as e:
        raise RootPathError(path, e.strerror or str(e)) from e

    return path


def walk_with_policy(path: Path, policy: WalkPolicy) -> Iterator[tuple[Path, FileContext]]:
    """Walk a tree applying the exclusions and symlink handling of ``policy``.

    Yields:
        Tuples of (path, file_context) for every file and directory under ``path``.
        A followed symlink is yielded under its own path with a context describing
        its target.
    """
    context = FileContext(None, None, path)
    root_stat = path.stat()
    gen = walk(path, context, {(root_stat.st_dev, root_stat.st_ino)})
    pending = None

    try:
        while True:
            file_path, file_context = gen.send(pending)
            pending = None

            if file_context.relative_path in policy.excluded_paths:
                logger.debug(f"Excluded: {file_path}")
                pending = False
                continue

            if policy.follow_symlinks and file_context.is_symlink():
                substitute = _follow_symlink(file_path, file_context, path)
                if substitute is not None:
                    pending = file_context = substitute

            yield file_path, file_context
    except StopIteration:
        pass


def _follow_symlink(file_path: Path, file_context: FileContext, root: Path) -> FileContext | None:
    target = resolve_symlink_target(file_path, {root})
    if target is None:
        logger.debug(f"Not following symlink {file_path}")
        return None

    try:
        st = target.stat()
    except OSError as e:
        logger.warning(str(TraversalEntryError(target, e)))
        return None

    return FileContext(file_context.parent, file_context.name, path=target, st=st)


def scan_files(root: Path, policy: WalkPolicy | None = None) -> Iterator[FileRecord]:
    """Yield (path, size) for every regular file under ``root``."""
    if policy is None:
        policy = WalkPolicy()

    for file_path, context in walk_with_policy(root, policy):
        if not context.is_file():
            continue

        size = context.stat.st_size
        if size == 0 and not policy.include_empty:
            continue

        yield FileRecord(file_path, size)


def resolve_symlink_target(file_path: Path, boundary_paths: set[Path]) -> Path | None:
    """Follow a symlink chain and return its final target if it is outside the boundaries.

    The chain is followed one link at a time. A target inside any of
    ``boundary_paths`` is reached by the walk anyway, so such a chain is not
    followed, nor is a broken chain or a loop.

    Returns:
        The final target, or None if the symlink should not be followed
    """
    current_path = file_path.absolute()
    visited = set()

    while current_path.is_symlink():
        if current_path in visited:
            return None
        visited.add(current_path)

        try:
            target = current_path.readlink()
        except OSError:
            return None

        if not target.is_absolute():
            target = current_path.parent / target
        # Collapse "." and ".." lexically; resolving would follow the rest of the chain.
        target = Path(os.path.normpath(target))

        for boundary_path in boundary_paths:
            if target.is_relative_to(Path(os.path.normpath(boundary_path.absolute()))):
                return None

        current_path = target

    try:
        current_path.stat()
    except OSError:
        return None
    return current_path
