"""Worker pool: N workers batching records from one shared intake queue."""
import logging
import queue
import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .config import LoadConfiguration
from .encoder import EncodedDocument, encode_document
from .exceptions import MalformedDocument, SubmissionFailed, WorkerPoolError
from .submitter import submit_batch

logger = logging.getLogger(__name__)

_CLOSED = object()

# how often a blocked producer checks that some worker is still alive
PUT_POLL_SECONDS = 0.5


class IntakeQueue:
    """Bounded blocking channel from the producer to the workers.

    ``put`` blocks while the queue is full. ``close`` is called once, by the
    producer; after that every ``get`` returns None.
    """

    def __init__(self, maxsize: int = 1):
        self._queue = queue.Queue(maxsize=maxsize)
        self._lock = threading.Lock()
        self._closed = False

    def put(self, record: str, timeout: Optional[float] = None) -> bool:
        """Enqueue ``record``. Returns False if ``timeout`` ran out first."""
        if self._closed:
            raise RuntimeError("put on closed intake queue")
        try:
            self._queue.put(record, timeout=timeout)
        except queue.Full:
            return False
        return True

    def discard(self) -> int:
        """Drop pending records, e.g. when nobody is left to read them."""
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                return dropped
            dropped += 1

    def close(self) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError("intake queue already closed")
            self._closed = True
        self._queue.put(_CLOSED)

    def get(self) -> Optional[str]:
        item = self._queue.get()
        if item is _CLOSED:
            # hand the marker on so every other worker sees it too
            self._queue.put(_CLOSED)
            return None
        return item


class BatchAccumulator:
    """Collect encoded documents until ``batch_size`` is reached."""

    def __init__(self, batch_size: int):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.batch_size = batch_size
        self._docs: List[EncodedDocument] = []

    def __len__(self) -> int:
        return len(self._docs)

    def add(self, doc: EncodedDocument) -> Optional[Tuple[EncodedDocument, ...]]:
        """Append ``doc``; return the full batch and start over once it is full."""
        self._docs.append(doc)
        if len(self._docs) < self.batch_size:
            return None
        batch, self._docs = tuple(self._docs), []
        return batch

    def drain(self) -> Optional[Tuple[EncodedDocument, ...]]:
        """Return the final partial batch, or None if nothing is buffered."""
        if not self._docs:
            return None
        batch, self._docs = tuple(self._docs), []
        return batch


@dataclass
class WorkerStats:
    batches: int = 0
    accepted: int = 0
    rejected: int = 0
    malformed: int = 0
    failed_batches: int = 0
    lost: int = 0
    rejected_by_kind: Dict[str, int] = field(default_factory=dict)

    def __add__(self, other: "WorkerStats") -> "WorkerStats":
        return WorkerStats(
            batches=self.batches + other.batches,
            accepted=self.accepted + other.accepted,
            rejected=self.rejected + other.rejected,
            malformed=self.malformed + other.malformed,
            failed_batches=self.failed_batches + other.failed_batches,
            lost=self.lost + other.lost,
            rejected_by_kind=dict(Counter(self.rejected_by_kind) + Counter(other.rejected_by_kind)),
        )

    @property
    def submitted(self) -> int:
        """Documents that went out in a bulk request, whatever the outcome."""
        return self.accepted + self.rejected + self.lost


def _flush(name: str, client: Any, batch, stats: WorkerStats, counter: int, verbose: bool) -> None:
    stats.batches += 1
    try:
        result = submit_batch(client, batch, worker=name)
    except SubmissionFailed as e:
        stats.failed_batches += 1
        stats.lost += e.size
        logger.warning("[%s] %s (%d documents lost)", name, e, e.size)
        return
    except Exception:
        stats.failed_batches += 1
        stats.lost += len(batch)
        logger.exception("[%s] unexpected error submitting batch (%d documents lost)", name, len(batch))
        return
    stats.accepted += result.accepted
    stats.rejected += result.rejected
    for kind, n in result.rejected_by_kind.items():
        stats.rejected_by_kind[kind] = stats.rejected_by_kind.get(kind, 0) + n
    if verbose:
        logger.info("[%s] @%d", name, counter)


def _encode(name: str, record: str, config: LoadConfiguration, stats: WorkerStats) -> Optional[EncodedDocument]:
    try:
        return encode_document(record, config)
    except MalformedDocument as e:
        logger.warning("[%s] skipping malformed document: %s: %.200s", name, e, e.record)
    except Exception:
        logger.exception("[%s] skipping document that failed to encode: %.200s", name, record)
    stats.malformed += 1
    return None


def run_worker(name: str, intake: IntakeQueue, client: Any, config: LoadConfiguration) -> WorkerStats:
    """Pull, encode, batch and submit until the intake queue is closed.

    A bad document or a failed batch is counted and logged; the loop goes on.
    """
    stats = WorkerStats()
    acc = BatchAccumulator(config.batch_size)
    counter = 0
    while True:
        record = intake.get()
        if record is None:
            break
        counter += 1
        doc = _encode(name, record, config, stats)
        if doc is None:
            continue
        batch = acc.add(doc)
        if batch is not None:
            _flush(name, client, batch, stats, counter, config.verbose)
    batch = acc.drain()
    if batch is not None:
        _flush(name, client, batch, stats, counter, config.verbose)
    return stats


def run_pool(records: Iterable[str], client: Any, config: LoadConfiguration) -> Tuple[int, WorkerStats]:
    """Feed ``records`` to ``config.workers`` workers and wait for all of them.

    Returns the number of records read and the summed worker counters. The
    queue is closed even when reading fails, so workers always finish; the
    read error is raised once they have. If every worker has exited while
    records remain, WorkerPoolError is raised instead of blocking forever.
    """
    intake = IntakeQueue(maxsize=config.workers)
    count = 0
    with ThreadPoolExecutor(max_workers=config.workers, thread_name_prefix="bulkload") as pool:
        futures = [
            pool.submit(run_worker, f"worker-{i}", intake, client, config)
            for i in range(config.workers)
        ]
        try:
            for record in records:
                while not intake.put(record, timeout=PUT_POLL_SECONDS):
                    if all(f.done() for f in futures):
                        dropped = intake.discard()
                        raise WorkerPoolError(
                            f"all workers exited after {count - dropped} records, stopping the load")
                count += 1
        finally:
            intake.close()
        total = WorkerStats()
        for future in futures:
            total = total + future.result()
    return count, total
