import asyncio
import logging
import signal
from asyncio import TaskGroup
from typing import Iterable, NamedTuple

from ..index.size_index import SizeIndex
from ..utils.hash_pool import HashWorkerPool, HashResult
from ..utils.walker import FileRecord

logger = logging.getLogger(__name__)


class ScanOutcome(NamedTuple):
    """Final state of a coordinator run."""
    index: SizeIndex
    files_observed: int
    tasks_submitted: int
    results_applied: int
    failures: int
    # Paths that were due for hashing but never got a result because the run stopped.
    unhashed: int
    interrupted: bool


class Coordinator:
    """Single writer of a SizeIndex, feeding a HashWorkerPool and applying its results.

    A producer drains the scanner into SizeIndex.observe() and submits the tasks it
    emits, while a consumer applies the pool's results. Both are tasks of the same
    event loop and mutate the index only between awaits, so the index needs no lock.
    """

    # Let the consumer and signal handlers run at least this often while scanning
    # files that need no hashing.
    YIELD_INTERVAL = 256

    def __init__(self, index: SizeIndex, pool: HashWorkerPool):
        self._index = index
        self._pool = pool
        self._outstanding = 0
        self._submitted = 0
        self._applied = 0
        self._failures = 0
        self._stopping = False
        self._abandoning = False

    @property
    def index(self) -> SizeIndex:
        return self._index

    @property
    def outstanding(self) -> int:
        """Tasks submitted to the pool whose result has not been applied yet."""
        return self._outstanding

    @property
    def stopping(self) -> bool:
        return self._stopping

    def stop(self, abandon: bool = False):
        """Stop reading the scanner and submitting hash tasks.

        Tasks already in the pool are awaited, or given up on when ``abandon`` is
        set. Either way the index stays consistent: a path whose hash never came
        back is simply absent from every bucket.
        """
        if not self._stopping:
            logger.info("Stopping scan, no further files will be hashed")
            self._stopping = True
        if abandon and not self._abandoning:
            self._abandoning = True
            self._pool.abandon()

    async def run(self, records: Iterable[FileRecord]) -> ScanOutcome:
        async with TaskGroup() as tg:
            tg.create_task(self._consume())
            try:
                await self._produce(records)
            finally:
                if not self._abandoning:
                    self._pool.seal()

        if not self._abandoning and self._outstanding:
            raise RuntimeError(f"{self._outstanding} hash results never arrived")

        outcome = ScanOutcome(
            self._index,
            self._index.observed_count,
            self._submitted,
            self._applied,
            self._failures,
            self._index.pending_count,
            self._stopping)
        logger.info(f"Scanned {outcome.files_observed} files, hashed {outcome.results_applied}, "
                    f"failed {outcome.failures}, unhashed {outcome.unhashed}")
        return outcome

    async def _produce(self, records: Iterable[FileRecord]):
        for count, record in enumerate(records, 1):
            if self._stopping:
                break

            tasks = self._index.observe(record.path, record.size)
            for task in tasks:
                if self._stopping or not await self._pool.submit(task):
                    break
                self._submitted += 1
                self._outstanding += 1

            if tasks or count % self.YIELD_INTERVAL == 0:
                await asyncio.sleep(0)

    async def _consume(self):
        async for result in self._pool.results():
            self._outstanding -= 1
            self._apply(result)

    def _apply(self, result: HashResult):
        if result.ok:
            self._index.apply_hash_result(result.size, result.path, result.digest)
            self._applied += 1
        else:
            logger.warning(str(result.error))
            self._index.exclude(result.size, result.path, result.error)
            self._failures += 1


async def do_find_duplicates(pool: HashWorkerPool, records: Iterable[FileRecord],
                             handle_interrupts: bool = False) -> ScanOutcome:
    """Run a coordinator over ``records`` with a fresh SizeIndex.

    With ``handle_interrupts``, the first SIGINT stops the scan after in-flight
    hashes finish and a second one abandons them.
    """
    coordinator = Coordinator(SizeIndex(), pool)
    loop = asyncio.get_running_loop()
    installed = False

    if handle_interrupts:
        def interrupt():
            coordinator.stop(abandon=coordinator.stopping)

        try:
            loop.add_signal_handler(signal.SIGINT, interrupt)
            installed = True
        except NotImplementedError:
            logger.debug("Signal handlers are not supported by this event loop")

    try:
        return await coordinator.run(records)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)
