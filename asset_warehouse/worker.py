"""Bounded job queue and the worker pool that processes uploads."""

from __future__ import annotations

import copy
import logging
import queue
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from .errors import AssetNotFound, QueueSaturated, ValidationError
from .gateway import normalize_category
from .models import (
    FOUR_VIEW_SLOTS,
    KIND_MULTI_VIEW,
    KIND_SINGLE,
    PRIMARY_SLOT,
    SIX_VIEW_SLOTS,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PROCESSING,
    AssetRecord,
    UploadJob,
)

logger = logging.getLogger(__name__)

_STOP = object()


def clean_tags(tags) -> List[str]:
    # The ledger joins tags with commas, so a comma inside a tag becomes a space.
    cleaned = (str(tag).replace(",", " ").strip() for tag in (tags or []) if tag)
    return [" ".join(tag.split()) for tag in cleaned if tag]


def validate_job(job: UploadJob) -> None:
    """Reject uploads that are missing fields or slots before they are queued."""
    if not job.title or not job.title.strip():
        raise ValidationError("title is required")
    if not job.artist or not job.artist.strip():
        raise ValidationError("artist is required")

    slots = set(job.staged_paths)
    if job.kind == KIND_SINGLE:
        if slots != {PRIMARY_SLOT}:
            raise ValidationError(f"single-image upload needs exactly the '{PRIMARY_SLOT}' slot")
    elif job.kind == KIND_MULTI_VIEW:
        expected = set(SIX_VIEW_SLOTS) if len(slots) > len(FOUR_VIEW_SLOTS) else set(FOUR_VIEW_SLOTS)
        missing = sorted(expected - slots)
        unknown = sorted(slots - expected)
        if missing:
            raise ValidationError(f"missing view(s): {', '.join(missing)}")
        if unknown:
            raise ValidationError(f"unknown view(s): {', '.join(unknown)}")
        if job.staged_dir is None:
            raise ValidationError("multi-view upload needs a staged directory")
    else:
        raise ValidationError(f"unknown asset kind: {job.kind}")


class Scheduler:
    """Accepts upload jobs and runs them on a fixed pool of worker threads."""

    def __init__(self, store, gateway, ledger, worker_count: int = 4, queue_size: int = 100):
        if worker_count < 1:
            raise ValueError(f"worker_count must be at least 1, got {worker_count}")
        if queue_size < 1:
            raise ValueError(f"queue_size must be at least 1, got {queue_size}")
        self.store = store
        self.gateway = gateway
        self.ledger = ledger
        self.worker_count = worker_count
        self._queue: "queue.Queue" = queue.Queue(maxsize=queue_size)
        self._statuses: Dict[str, AssetRecord] = {}
        self._status_changed = threading.Condition(threading.Lock())
        self._threads: List[threading.Thread] = []

    # -- lifecycle -------------------------------------------------------

    def start(self) -> None:
        if self._threads:
            return
        for idx in range(self.worker_count):
            thread = threading.Thread(target=self._worker_loop, args=(idx,), name=f"asset-worker-{idx}", daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info("Started %d workers", self.worker_count)

    def drain(self) -> None:
        """Block until every accepted job has been processed."""
        self._queue.join()

    def shutdown(self, wait: bool = True) -> None:
        for _ in self._threads:
            self._queue.put(_STOP)
        if wait:
            for thread in self._threads:
                thread.join()
        self._threads = []
        logger.info("Workers stopped")

    # -- submission and status ------------------------------------------

    def submit(self, job: UploadJob) -> AssetRecord:
        validate_job(job)
        job.title = job.title.strip()
        job.artist = job.artist.strip()
        job.tags = clean_tags(job.tags)
        record = AssetRecord(
            asset_id=job.asset_id,
            kind=job.kind,
            status=STATUS_PROCESSING,
            title=job.title,
            artist=job.artist,
            uploaded_at=datetime.now(),
            tags=list(job.tags),
            model_filename=job.model_filename,
        )
        with self._status_changed:
            if job.asset_id in self._statuses:
                raise ValidationError(f"asset ID {job.asset_id} was already submitted")
            try:
                self._queue.put_nowait(job)
            except queue.Full:
                raise QueueSaturated("job queue is full") from None
            self._statuses[job.asset_id] = record
            snapshot = copy.deepcopy(record)
        logger.info("Queued %s (%s)", job.asset_id, job.kind)
        return snapshot

    def get_status(self, asset_id: str) -> AssetRecord:
        with self._status_changed:
            record = self._statuses.get(asset_id)
            if record is None:
                raise AssetNotFound(asset_id)
            return copy.deepcopy(record)

    def wait(self, asset_id: str, timeout: Optional[float] = None) -> AssetRecord:
        """Block until the asset reaches ``completed`` or ``failed``."""
        with self._status_changed:
            if asset_id not in self._statuses:
                raise AssetNotFound(asset_id)
            self._status_changed.wait_for(lambda: self._statuses[asset_id].is_terminal, timeout=timeout)
            return copy.deepcopy(self._statuses[asset_id])

    def _finish(self, record: AssetRecord) -> None:
        with self._status_changed:
            self._statuses[record.asset_id] = record
            self._status_changed.notify_all()

    # -- workers ---------------------------------------------------------

    def _worker_loop(self, worker_id: int) -> None:
        logger.debug("Worker %d started", worker_id)
        while True:
            job = self._queue.get()
            try:
                if job is _STOP:
                    return
                self._run_job(worker_id, job)
            finally:
                self._queue.task_done()

    def _run_job(self, worker_id: int, job: UploadJob) -> None:
        logger.info("Worker %d processing %s (%s)", worker_id, job.asset_id, job.kind)
        base = self.get_status(job.asset_id)
        try:
            if job.kind == KIND_SINGLE:
                record = self._process_single(job, base)
            else:
                record = self._process_multi_view(job, base)
        except Exception as exc:
            logger.exception("Job %s failed", job.asset_id)
            base.status = STATUS_FAILED
            base.error = str(exc)
            base.processed_at = datetime.now()
            self._finish(base)
            return
        self._finish(record)
        logger.info("Worker %d completed %s", worker_id, job.asset_id)

    def _process_single(self, job: UploadJob, record: AssetRecord) -> AssetRecord:
        staged_path = Path(job.staged_paths[PRIMARY_SLOT])

        self.store.thumbnail(staged_path)
        width, height = self.store.image_dimensions(staged_path)
        file_size = self.store.file_size(staged_path)

        analysis = self.gateway.classify_single(staged_path)
        category = normalize_category(analysis.primary_category)
        logger.info("%s categorized as %s", job.asset_id, category)

        file_path, thumb_path = self.store.relocate_single(job.asset_id, staged_path, category)

        record.category = category
        record.file_path = file_path
        record.thumbnail_path = thumb_path
        record.width = width
        record.height = height
        record.file_size = file_size
        record.analysis = analysis
        record.status = STATUS_COMPLETED
        record.processed_at = datetime.now()

        self.ledger.append(record)
        return record

    def _process_multi_view(self, job: UploadJob, record: AssetRecord) -> AssetRecord:
        slot_paths = {slot: Path(path) for slot, path in job.staged_paths.items()}

        self.store.thumbnails(slot_paths)
        total_size = sum(self.store.file_size(path) for path in slot_paths.values())
        if job.model_path is not None:
            total_size += self.store.file_size(job.model_path)

        analysis = self.gateway.classify_multi_view(slot_paths)
        category = normalize_category(analysis.primary_category)
        logger.info("%s categorized as %s (%d views)", job.asset_id, category, len(slot_paths))

        folder_path, views, model_path = self.store.relocate_multi_view(job.asset_id, job.staged_dir, category)

        record.category = category
        record.folder_path = folder_path
        record.views = views
        record.total_file_size = total_size
        record.model_file_path = model_path
        record.model_filename = job.model_filename if model_path else None
        record.analysis = analysis
        record.status = STATUS_COMPLETED
        record.processed_at = datetime.now()

        self.ledger.append(record)
        return record
