"""Shared test utilities for dupfind tests."""
from pathlib import Path

from dupfind.utils.walker import FileRecord


def make_tree(root: Path, files: dict[str, bytes]) -> dict[str, Path]:
    """Create files below root from a {relative path: content} mapping."""
    paths = {}
    for name, content in files.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        paths[name] = path
    return paths


def records_for(paths) -> list[FileRecord]:
    return [FileRecord(path, path.stat().st_size) for path in paths]


def report_as_names(report, root: Path) -> list[tuple[int, list[str]]]:
    """Reduce a DuplicateReport to (size, relative names) per group, in report order."""
    return [(group.size, [str(p.relative_to(root)) for p in group.paths]) for group in report]


# The example tree used throughout: a and b are identical, c has the same size as
# both but other content, d is the only file of its size.
SCENARIO = {
    'a': b'abc',
    'b': b'abc',
    'c': b'xyz',
    'd': b'hello',
}
