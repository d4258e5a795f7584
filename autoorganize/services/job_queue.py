"""
Job Queue - asynchronous ingestion jobs on a bounded worker pool.

Handles:
- Job state machine: queued -> running -> completed | failed | cancelled
- Per-item retries with exponential backoff (storage failures only); the
  pipeline's own store retry is disabled for job items
- Bounded history: the oldest finished jobs are forgotten
- Failure threshold deciding the job's aggregate status
- Cancellation: dispatched items finish, pending items are skipped
"""

import asyncio
from datetime import datetime

from autoorganize.config import JobConfig
from autoorganize.models.document import DocumentInput
from autoorganize.models.events import SyncEvent, SyncEventType
from autoorganize.models.ingestion import IngestionStatus
from autoorganize.models.job import ItemStatus, Job, JobItemResult, JobKind, JobStatus
from autoorganize.services.ingestion_pipeline import IngestionPipeline
from autoorganize.services.notification_bus import NotificationBus
from autoorganize.utils.exceptions import AutoOrganizeError, NotFoundError, StorageFailure, ValidationError
from autoorganize.utils.id_generator import generate_job_id
from autoorganize.utils.logger import get_logger
from autoorganize.utils.retry import retry_async

logger = get_logger(__name__)


class JobQueue:
    """
    Tracks ingestion jobs and feeds their items to a pool of workers.

    Items of one job may run in parallel on different workers; the job
    queue itself is never retried wholesale.
    """

    def __init__(
        self,
        pipeline: IngestionPipeline,
        bus: NotificationBus,
        config: JobConfig | None = None,
    ):
        """
        Initialize job queue.

        Args:
            pipeline: Ingestion pipeline that processes each item
            bus: Notification bus for sync_completed events
            config: Job configuration (workers, attempts, backoff, threshold)
        """
        self.pipeline = pipeline
        self.bus = bus
        self.config = config or JobConfig()

        self._jobs: dict[str, Job] = {}
        self._inputs: dict[str, list[DocumentInput]] = {}
        self._passwords: dict[str, str | None] = {}
        self._done: dict[str, asyncio.Event] = {}
        self._queue: asyncio.Queue[tuple[str, int]] | None = None
        self._workers: list[asyncio.Task] = []

    # ═══════════════════════════════════════════════════════════
    # LIFECYCLE
    # ═══════════════════════════════════════════════════════════

    def start(self) -> None:
        """Start the worker pool (idempotent)."""
        if self._workers:
            return
        self._queue = asyncio.Queue()
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"ingest-worker-{i}")
            for i in range(self.config.workers)
        ]
        logger.info(f"Job queue started with {self.config.workers} workers")

    async def stop(self) -> None:
        """Stop the worker pool; in-flight items are cancelled."""
        for task in self._workers:
            task.cancel()
        for task in self._workers:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._workers = []
        self._queue = None
        logger.info("Job queue stopped")

    # ═══════════════════════════════════════════════════════════
    # SUBMISSION
    # ═══════════════════════════════════════════════════════════

    def submit_batch(
        self,
        documents: list[DocumentInput],
        password: str | None = None,
        kind: JobKind = JobKind.BATCH,
    ) -> Job:
        """
        Queue documents for ingestion and return immediately.

        Args:
            documents: Documents in job order
            password: Encryption password for confidential items
            kind: Job kind

        Returns:
            The queued job

        Raises:
            ValidationError: If the batch is empty
        """
        if not documents:
            raise ValidationError("Batch must contain at least one document")

        self.start()
        job = Job(
            id=generate_job_id(),
            kind=kind,
            failure_threshold=self.config.failure_threshold,
            items=[
                JobItemResult(index=i, target=doc.file_path or doc.title or f"item-{i}")
                for i, doc in enumerate(documents)
            ],
        )
        self._jobs[job.id] = job
        self._inputs[job.id] = list(documents)
        self._passwords[job.id] = password
        self._done[job.id] = asyncio.Event()

        for index in range(len(documents)):
            self._queue.put_nowait((job.id, index))

        logger.info(
            f"Queued job {job.id}", extra={"job_id": job.id, "kind": kind.value, "items": len(documents)}
        )
        return job

    def submit_single(self, document: DocumentInput, password: str | None = None) -> Job:
        return self.submit_batch([document], password=password, kind=JobKind.SINGLE)

    # ═══════════════════════════════════════════════════════════
    # QUERIES & CONTROL
    # ═══════════════════════════════════════════════════════════

    def status(self, job_id: str) -> Job:
        """
        Get a job with its per-item results.

        Raises:
            NotFoundError: If the job is unknown
        """
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found", {"job_id": job_id})
        return job

    def list(self, status: JobStatus | None = None, limit: int = 50) -> list[Job]:
        """Jobs, newest first, optionally filtered by status."""
        jobs = sorted(self._jobs.values(), key=lambda j: j.created_at, reverse=True)
        if status is not None:
            jobs = [j for j in jobs if j.status == status]
        return jobs[:limit]

    def cancel(self, job_id: str) -> Job:
        """
        Request cancellation of a job.

        Items already running complete; pending items are marked skipped.
        Cancelling a finished job is a no-op.
        """
        job = self.status(job_id)
        if job.is_terminal():
            return job

        job.cancel_requested = True
        for item in job.items:
            if item.status == ItemStatus.PENDING:
                item.status = ItemStatus.SKIPPED
        logger.info(f"Cancellation requested for job {job_id}", extra={"job_id": job_id})
        self._maybe_finish(job)
        return job

    async def wait(self, job_id: str, timeout: float | None = None) -> Job:
        """
        Wait until a job reaches a terminal state.

        Raises:
            NotFoundError: If the job is unknown
            asyncio.TimeoutError: If the job does not finish in time
        """
        job = self.status(job_id)
        await asyncio.wait_for(self._done[job_id].wait(), timeout)
        return job

    def counts(self) -> dict[str, int]:
        """Number of jobs per status."""
        counts = {status.value: 0 for status in JobStatus}
        for job in self._jobs.values():
            counts[job.status.value] += 1
        return counts

    # ═══════════════════════════════════════════════════════════
    # WORKERS
    # ═══════════════════════════════════════════════════════════

    async def _worker(self, number: int) -> None:
        while True:
            job_id, index = await self._queue.get()
            try:
                await self._process_item(job_id, index)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"Worker {number} crashed on {job_id}[{index}]: {e}",
                    extra={"job_id": job_id, "index": index, "error_type": type(e).__name__},
                )
            finally:
                self._queue.task_done()

    async def _process_item(self, job_id: str, index: int) -> None:
        job = self._jobs[job_id]
        item = job.items[index]
        if item.status != ItemStatus.PENDING:
            return

        if job.status == JobStatus.QUEUED:
            job.status = JobStatus.RUNNING
            job.started_at = datetime.now()
        item.status = ItemStatus.RUNNING

        document = self._inputs[job_id][index]
        attempts: list[int] = []
        try:
            result = await retry_async(
                lambda: self.pipeline.ingest_one(
                    document, self._passwords.get(job_id), store_attempts=1
                ),
                operation_name=f"job {job_id} item {index}",
                max_attempts=self.config.max_attempts,
                base_delay=self.config.backoff_base,
                retry_on=(StorageFailure,),
                attempts_out=attempts,
            )
            item.document_id = result.document_id
            item.duplicate = result.duplicate
            item.failed_stages = result.failed_stages
            item.status = (
                ItemStatus.PARTIAL if result.status == IngestionStatus.PARTIAL else ItemStatus.SUCCEEDED
            )
        except AutoOrganizeError as e:
            item.status = ItemStatus.FAILED
            item.error = f"{type(e).__name__}: {e.message}"
            logger.error(
                f"Job item failed: {job_id}[{index}]",
                extra={"job_id": job_id, "index": index, "error_type": type(e).__name__},
            )
        except Exception as e:
            item.status = ItemStatus.FAILED
            item.error = f"{type(e).__name__}: {e}"
            logger.exception(
                f"Unexpected error on job item {job_id}[{index}]",
                extra={"job_id": job_id, "index": index, "error_type": type(e).__name__},
            )
        finally:
            item.attempts = attempts[0] if attempts else 0
            job.retry_count += max(0, item.attempts - 1)
            self._maybe_finish(job)

    def _evict_finished(self) -> None:
        """Forget the oldest terminal jobs beyond ``history_size``."""
        finished = [job for job in self._jobs.values() if job.is_terminal()]
        excess = len(finished) - self.config.history_size
        if excess <= 0:
            return
        finished.sort(key=lambda j: j.completed_at or j.created_at)
        for job in finished[:excess]:
            del self._jobs[job.id]
            self._done.pop(job.id, None)
        logger.debug(f"Evicted {excess} finished jobs", extra={"evicted": excess})

    def _maybe_finish(self, job: Job) -> None:
        if job.is_terminal():
            return
        if any(item.status in (ItemStatus.PENDING, ItemStatus.RUNNING) for item in job.items):
            return

        if job.failure_ratio() > job.failure_threshold:
            job.status = JobStatus.FAILED
            job.error = (
                f"{job.count(ItemStatus.FAILED)} of {len(job.items)} items failed "
                f"(threshold {job.failure_threshold:.0%})"
            )
        elif job.cancel_requested and job.count(ItemStatus.SKIPPED):
            job.status = JobStatus.CANCELLED
        else:
            job.status = JobStatus.COMPLETED
        job.completed_at = datetime.now()

        self._inputs.pop(job.id, None)
        self._passwords.pop(job.id, None)
        self._done[job.id].set()
        self._evict_finished()

        summary = {status.value: job.count(status) for status in ItemStatus if job.count(status)}
        logger.info(
            f"Job {job.id} {job.status.value}", extra={"job_id": job.id, "items": summary}
        )
        self.bus.publish(
            SyncEvent(
                event_type=SyncEventType.SYNC_COMPLETED,
                data={
                    "job_id": job.id,
                    "status": job.status.value,
                    "items": summary,
                    "document_ids": job.document_ids,
                },
            )
        )
