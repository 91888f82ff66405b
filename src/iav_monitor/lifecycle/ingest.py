"""
Income Ingest - decoupling intake from stick control

Employers report monthly incomes in batches. The intake side only
enqueues; a single consumer per partition drains its queue and feeds the
events one at a time to the StickAccumulator. One consumer per partition
means one writer per person, so stick counts never race.
"""

import queue
import threading
import zlib
from collections.abc import Sequence

from iav_monitor.kernel.logging import get_logger
from iav_monitor.kernel.metrics import income_batches_received_total, ingest_queue_depth
from iav_monitor.lifecycle.sticks import StickAccumulator, StickResult
from iav_monitor.registry.models import MonthlyIncomeEvent

logger = get_logger(__name__)

# Wakes a blocked consumer on shutdown
_STOP = object()


class IngestQueue:
    """
    Unbounded FIFO of income batches, optionally partitioned by person

    With one partition (the default) every batch stays intact and
    batches are consumed in submission order. With N partitions a batch
    is split by partition_for(personal_number), preserving list order
    inside each partition.
    """

    def __init__(self, partitions: int = 1) -> None:
        if partitions < 1:
            raise ValueError("partitions must be >= 1")
        self.partitions = partitions
        self._queues: list[queue.Queue] = [queue.Queue() for _ in range(partitions)]

    def partition_for(self, personal_number: str) -> int:
        """Stable partition index for a person (same across processes)"""
        if self.partitions == 1:
            return 0
        return zlib.crc32(personal_number.encode("utf-8")) % self.partitions

    def submit(self, batch: Sequence[MonthlyIncomeEvent]) -> None:
        """
        Enqueue a batch without blocking

        Empty batches are ignored.
        """
        if not batch:
            return

        if self.partitions == 1:
            self._put(0, list(batch))
        else:
            split: dict[int, list[MonthlyIncomeEvent]] = {}
            for event in batch:
                split.setdefault(self.partition_for(event.personal_number), []).append(event)
            for partition, events in split.items():
                self._put(partition, events)

        income_batches_received_total.inc()
        logger.debug("Income batch queued", events=len(batch), depth=self.depth)

    def take_next(
        self, partition: int = 0, timeout: float | None = None
    ) -> list[MonthlyIncomeEvent] | None:
        """
        Remove and return the oldest batch of a partition

        Blocks until a batch arrives. Returns None when the timeout expires
        or the queue was woken up for shutdown.
        """
        try:
            item = self._queues[partition].get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _STOP:
            return None
        ingest_queue_depth.dec()
        return item

    def wake(self, partition: int = 0) -> None:
        """Unblock a consumer waiting in take_next()"""
        self._queues[partition].put(_STOP)

    @property
    def depth(self) -> int:
        """Batches waiting across all partitions (approximate)"""
        return sum(q.qsize() for q in self._queues)

    def _put(self, partition: int, events: list[MonthlyIncomeEvent]) -> None:
        self._queues[partition].put(events)
        ingest_queue_depth.inc()


class MonitoringWorker:
    """
    Consumer loop feeding one queue partition into stick control

    A persistence failure stops the worker: the exception is kept in
    `failure` and the remaining events of the batch stay unprocessed.
    """

    def __init__(
        self,
        ingest: IngestQueue,
        accumulator: StickAccumulator,
        partition: int = 0,
    ) -> None:
        self.ingest = ingest
        self.accumulator = accumulator
        self.partition = partition
        self.failure: BaseException | None = None
        self.processed = 0
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self, timeout: float | None = None) -> bool:
        """
        Process the next batch, waiting up to timeout for one

        Returns:
            True if a batch was processed

        Raises:
            StoreError: If stick control could not persist its transition
        """
        batch = self.ingest.take_next(self.partition, timeout=timeout)
        if batch is None:
            return False
        self._process_batch(batch)
        return True

    def process_pending(self) -> list[StickResult]:
        """Drain every queued batch synchronously (no consumer thread needed)"""
        results: list[StickResult] = []
        while True:
            batch = self.ingest.take_next(self.partition, timeout=0)
            if batch is None:
                return results
            results.extend(self._process_batch(batch))

    def _process_batch(self, batch: list[MonthlyIncomeEvent]) -> list[StickResult]:
        results = []
        for event in batch:
            results.append(self.accumulator.process(event))
            self.processed += 1
        return results

    def start(self) -> None:
        """Start the consumer thread"""
        if self.running:
            return
        self._stopping.clear()
        self._thread = threading.Thread(
            target=self._run,
            name=f"iav-monitor-{self.partition}",
            daemon=True,
        )
        self._thread.start()
        logger.info("Monitoring worker started", partition=self.partition)

    def stop(self, timeout: float | None = 5.0) -> None:
        """Ask the consumer to finish its current batch and exit"""
        if self._thread is None:
            return
        self._stopping.set()
        # A dead consumer would leave the wake-up behind for the next reader
        if self.running:
            self.ingest.wake(self.partition)
        self._thread.join(timeout=timeout)
        logger.info(
            "Monitoring worker stopped",
            partition=self.partition,
            processed=self.processed,
        )

    def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                self.run_once()
            except Exception as e:
                self.failure = e
                logger.error(
                    "Monitoring worker failed",
                    partition=self.partition,
                    error=str(e),
                    exc_info=True,
                )
                return
