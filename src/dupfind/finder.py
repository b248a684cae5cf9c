import asyncio
import logging
import os
from pathlib import Path
from typing import NamedTuple

from .commands.find_duplicates import do_find_duplicates, ScanOutcome
from .report.duplicate_report import DuplicateReport
from .settings import ScanConfig
from .utils.hash_pool import HashWorkerPool
from .utils.walker import WalkPolicy, scan_files, validate_root

logger = logging.getLogger(__name__)


class FindResult(NamedTuple):
    report: DuplicateReport
    outcome: ScanOutcome


class DuplicateFinder:
    """Workflow layer for one duplicate scan of a directory tree.

    Wires the walker, a HashWorkerPool sized from the configuration, and a
    coordinator, then builds the DuplicateReport once every hash result has been
    applied. Each find() call uses a fresh pool and index, so repeated scans share
    no state.
    """

    def __init__(self, config: ScanConfig | None = None):
        self._config = config if config is not None else ScanConfig()

    @property
    def config(self) -> ScanConfig:
        return self._config

    def policy(self) -> WalkPolicy:
        return WalkPolicy(
            excluded_paths=self._config.excluded_paths,
            follow_symlinks=self._config.follow_symlinks,
            include_empty=self._config.include_empty)

    def create_pool(self) -> HashWorkerPool:
        config = self._config
        return HashWorkerPool(
            config.workers,
            queue_capacity=config.queue_capacity,
            algorithm=config.algorithm,
            chunk_size=config.chunk_size,
            timeout=config.timeout,
            executor=config.executor)

    def find(self, root: str | os.PathLike, handle_interrupts: bool = False) -> FindResult:
        """Scan ``root`` and report groups of identical files.

        Args:
            root: Directory to scan recursively
            handle_interrupts: Turn SIGINT into a graceful stop that still reports

        Raises:
            RootPathError: ``root`` is missing, not a directory or unreadable
        """
        root_path = validate_root(Path(root))
        logger.info(f"Scanning {root_path} with {self._config.workers} {self._config.executor} workers "
                    f"({self._config.algorithm})")

        with self.create_pool() as pool:
            outcome = asyncio.run(do_find_duplicates(
                pool, scan_files(root_path, self.policy()), handle_interrupts=handle_interrupts))

        report = DuplicateReport.from_index(outcome.index)
        logger.info(f"Found {len(report)} duplicate groups covering {report.duplicate_files} files")
        return FindResult(report, outcome)
