import asyncio
import hashlib
import itertools
import logging
import signal
from multiprocessing.pool import Pool, ThreadPool
from pathlib import Path
from typing import AsyncIterator, NamedTuple

import mmh3

from ..errors import HashReadError, HashTimeoutError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096
DEFAULT_WORKERS = 4
DEFAULT_ALGORITHM = 'mmh3'

# Content-identity hashes. None of them is relied upon for security.
HASH_ALGORITHMS = {
    'mmh3': mmh3.mmh3_x64_128,
    'md5': hashlib.md5,
    'sha1': hashlib.sha1,
    'sha256': hashlib.sha256,
    'blake2b': hashlib.blake2b,
}

EXECUTORS = {
    'process': Pool,
    'thread': ThreadPool,
}


def compute_digest_for_path(path: Path, algorithm: str = DEFAULT_ALGORITHM, chunk_size: int = CHUNK_SIZE) -> str:
    """Stream a file through a hash and return the lowercase hex digest."""
    hasher = HASH_ALGORITHMS[algorithm]()
    with open(path, "rb") as f:
        while chunk := f.read(chunk_size):
            hasher.update(chunk)
    return hasher.digest().hex()


def ignore_interrupts():
    """Worker initializer: SIGINT is handled by the coordinator's process only.

    A terminal Ctrl-C reaches the whole process group, and a worker dying of
    KeyboardInterrupt never reports its task back.
    """
    signal.signal(signal.SIGINT, signal.SIG_IGN)


class HashTask(NamedTuple):
    """Request to hash ``path``; ``size`` names the size group it belongs to."""
    path: Path
    size: int


class HashResult(NamedTuple):
    path: Path
    size: int
    digest: str | None
    error: HashReadError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class HashWorkerPool:
    """Fixed pool of workers computing file digests for an asyncio coordinator.

    Tasks go in through submit(), which waits while ``queue_capacity`` tasks are
    either running or holding a result the coordinator has not consumed yet.
    Results come out of results() in completion order. Workers see only the path
    they hash; nothing they do touches the coordinator's state.

    A pool serves one event loop run at a time: submit tasks, seal(), then consume
    results() until it ends.
    """

    def __init__(self,
                 workers: int = DEFAULT_WORKERS,
                 *,
                 queue_capacity: int | None = None,
                 algorithm: str = DEFAULT_ALGORITHM,
                 chunk_size: int = CHUNK_SIZE,
                 timeout: float | None = None,
                 executor: str = 'process'):
        if workers < 1:
            raise ValueError(f"workers must be positive, got {workers}")
        if algorithm not in HASH_ALGORITHMS:
            raise ValueError(f"Unknown hash algorithm: {algorithm}")
        if executor not in EXECUTORS:
            raise ValueError(f"Unknown executor: {executor}")
        if queue_capacity is None:
            queue_capacity = workers * 2
        if queue_capacity < 1:
            raise ValueError(f"queue_capacity must be positive, got {queue_capacity}")

        self._workers = workers
        self._capacity = queue_capacity
        self._algorithm = algorithm
        self._chunk_size = chunk_size
        self._timeout = timeout
        if executor == 'process':
            self._pool: Pool = Pool(workers, initializer=ignore_interrupts)
        else:
            self._pool = EXECUTORS[executor](workers)

        self._sequence = itertools.count()
        self._pending: dict[int, HashTask] = {}
        self._timers: dict[int, asyncio.TimerHandle] = {}
        self._loop: asyncio.AbstractEventLoop | None = None
        self._slots: asyncio.Semaphore | None = None
        self._results: asyncio.Queue | None = None
        self._sealed = False
        self._finished = False
        self._abandoned = False
        self._expired = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        if self._abandoned or self._pending or self._expired:
            # Workers may be stuck on a slow read nobody waits for anymore.
            self._pool.terminate()
        else:
            self._pool.close()
            self._pool.join()

    @property
    def concurrency(self) -> int:
        return self._workers

    @property
    def queue_capacity(self) -> int:
        return self._capacity

    @property
    def algorithm(self) -> str:
        return self._algorithm

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    async def submit(self, task: HashTask) -> bool:
        """Hand a task to the workers, waiting for capacity if the pool is full.

        Returns:
            True if the task was accepted, False if the pool was abandoned while
            waiting for capacity.

        Raises:
            RuntimeError: The pool has already been sealed
        """
        if self._sealed:
            raise RuntimeError("cannot submit to a sealed hash pool")
        self._bind()

        await self._slots.acquire()
        if self._abandoned:
            return False

        loop = self._loop
        task_id = next(self._sequence)
        self._pending[task_id] = task
        logger.debug(f"Starting hash computation for: {task.path}")

        try:
            self._pool.apply_async(
                compute_digest_for_path,
                args=(task.path, self._algorithm, self._chunk_size),
                callback=lambda v: self._post(loop, task_id, v, None),
                error_callback=lambda e: self._post(loop, task_id, None, e))
        except BaseException:
            del self._pending[task_id]
            self._slots.release()
            raise

        if self._timeout is not None:
            self._timers[task_id] = loop.call_later(self._timeout, self._expire, task_id)
        return True

    def seal(self):
        """Declare that no more tasks will be submitted.

        results() ends once every submitted task has delivered its result.
        """
        self._bind()
        self._sealed = True
        self._maybe_finish()

    def abandon(self):
        """Stop waiting for in-flight tasks.

        results() ends after the results already delivered. Completions still
        arriving from the workers are discarded, and close() terminates the
        workers instead of joining them.
        """
        self._bind()
        self._abandoned = True
        self._sealed = True
        abandoned = len(self._pending)
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._pending.clear()
        if abandoned:
            logger.info(f"Abandoned {abandoned} in-flight hash computations")

        # Wake any submitter blocked on capacity; it will see the pool is abandoned.
        for _ in range(self._capacity):
            self._slots.release()
        self._maybe_finish()

    async def results(self) -> AsyncIterator[HashResult]:
        """Yield results in completion order until the sealed pool runs dry."""
        self._bind()
        while True:
            result = await self._results.get()
            if result is None:
                break
            self._slots.release()
            yield result

    def _bind(self):
        loop = asyncio.get_running_loop()
        if self._loop is None:
            self._loop = loop
            self._slots = asyncio.Semaphore(self._capacity)
            self._results = asyncio.Queue()
        elif self._loop is not loop:
            raise RuntimeError("hash pool is already bound to another event loop")

    def _post(self, loop: asyncio.AbstractEventLoop, task_id: int, digest: str | None, error: BaseException | None):
        # Runs on the pool's result handler thread.
        try:
            loop.call_soon_threadsafe(self._complete, task_id, digest, error)
        except RuntimeError:
            logger.debug(f"Discarding hash result {task_id} delivered after the event loop closed")

    def _complete(self, task_id: int, digest: str | None, error: BaseException | None):
        task = self._pending.pop(task_id, None)
        if task is None:
            # Timed out or abandoned already.
            return

        timer = self._timers.pop(task_id, None)
        if timer is not None:
            timer.cancel()

        if error is None:
            logger.debug(f"Completed hash computation for: {task.path}")
            result = HashResult(task.path, task.size, digest)
        else:
            if not isinstance(error, HashReadError):
                error = HashReadError(task.path, error)
            result = HashResult(task.path, task.size, None, error)

        self._results.put_nowait(result)
        self._maybe_finish()

    def _expire(self, task_id: int):
        task = self._pending.pop(task_id, None)
        self._timers.pop(task_id, None)
        if task is None:
            return

        self._expired += 1
        logger.debug(f"Hash computation timed out for: {task.path}")
        self._results.put_nowait(HashResult(task.path, task.size, None, HashTimeoutError(task.path, self._timeout)))
        self._maybe_finish()

    def _maybe_finish(self):
        if self._sealed and not self._pending and not self._finished:
            self._finished = True
            self._results.put_nowait(None)
