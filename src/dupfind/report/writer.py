"""Text output of a DuplicateReport.

Each duplicate group is written as a header line followed by one tab-indented
line per path:

    hash:<digest>
    \t<path>
    \t<path>
"""

import contextlib
import logging
import sys
from typing import Iterator, TextIO

from .duplicate_report import DuplicateReport
from ..errors import OutputSinkError

logger = logging.getLogger(__name__)

STDOUT = '-'


@contextlib.contextmanager
def open_output(destination: str) -> Iterator[TextIO]:
    """Open the report destination; ``-`` is standard output, anything else a file path.

    Standard output is flushed but left open on exit.

    Raises:
        OutputSinkError: The file cannot be created or written
    """
    if destination == STDOUT:
        yield sys.stdout
        try:
            sys.stdout.flush()
        except OSError as e:
            raise OutputSinkError(destination, e) from e
        return

    try:
        stream = open(destination, 'w', encoding='utf-8', errors='surrogateescape')
    except OSError as e:
        raise OutputSinkError(destination, e) from e

    try:
        yield stream
    finally:
        try:
            stream.close()
        except OSError as e:
            raise OutputSinkError(destination, e) from e


def format_report(report: DuplicateReport) -> Iterator[str]:
    for group in report:
        yield f"hash:{group.digest}\n"
        for path in group.paths:
            yield f"\t{path}\n"


def write_report(report: DuplicateReport, stream: TextIO, destination: str = STDOUT):
    """Write every group of ``report`` to ``stream``.

    Raises:
        OutputSinkError: Writing to the stream failed
    """
    try:
        for line in format_report(report):
            stream.write(line)
    except OSError as e:
        raise OutputSinkError(destination, e) from e
    logger.info(f"Wrote {len(report)} duplicate groups to {'standard output' if destination == STDOUT else destination}")
