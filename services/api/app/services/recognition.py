"""Recognition job pipeline.

submit() stores the upload and persists a PENDING job, then returns. The
caller schedules run() off the request path as a FastAPI background task;
the stale-job sweeper in app.worker claims jobs itself and calls process().
run() moves the job to PROCESSING, calls the recognition worker through the
compute gateway and records exactly one terminal outcome:

- well-formed detections -> COMPLETED with the normalized list
- worker reported failure, malformed result, GatewayError or any unexpected
  error -> FAILED, and the uploaded image is deleted

Terminal writes are conditional on the job still being active, so a
COMPLETED/FAILED row is never rewritten. get_status() is read-only.
"""

import io
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from PIL import Image, UnidentifiedImageError
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.compute_gateway import ComputeGateway, WorkerKind
from app.errors import Forbidden, GatewayError, Internal, NotFound, ValidationFailed
from app.models import JobStatus, RecognitionJob
from app.schemas import Detection, RecognitionJobView
from app.services.storage import UploadStore
from app.settings import settings

logger = logging.getLogger("fridgemate.recognition")

DEFAULT_FAILURE_MESSAGE = "Image analysis failed"

_FORMAT_EXT = {"JPEG": "jpg", "PNG": "png", "WEBP": "webp", "GIF": "gif", "BMP": "bmp"}


class MalformedResult(ValueError):
    pass


def normalize_detections(result: dict[str, Any]) -> list[dict]:
    """Validate a recognition worker result and return {label, confidence, bbox} entries."""
    if not result.get("success"):
        raise MalformedResult(result.get("message") or DEFAULT_FAILURE_MESSAGE)

    raw = result.get("detections")
    if not isinstance(raw, list):
        raise MalformedResult("Recognition result has no detection list")

    normalized = []
    for i, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise MalformedResult(f"Detection {i} is not an object")
        label = entry.get("label")
        confidence = entry.get("confidence")
        bbox = entry.get("bbox")
        if not isinstance(label, str) or not label.strip():
            raise MalformedResult(f"Detection {i} has no label")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            raise MalformedResult(f"Detection {i} has no numeric confidence")
        if (
            not isinstance(bbox, (list, tuple))
            or len(bbox) != 4
            or any(isinstance(v, bool) or not isinstance(v, (int, float)) for v in bbox)
        ):
            raise MalformedResult(f"Detection {i} has an invalid bounding box")
        normalized.append(
            Detection(
                label=label.strip(),
                confidence=float(confidence),
                bbox=[float(v) for v in bbox],
            ).model_dump()
        )
    return normalized


def _sniff_image(image_bytes: bytes) -> str:
    """Return a file extension for the image, or raise ValidationFailed."""
    if not image_bytes:
        raise ValidationFailed("An image file is required")
    if len(image_bytes) > settings.upload_max_bytes:
        raise ValidationFailed(f"Image exceeds {settings.upload_max_bytes} bytes")
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            img.verify()
            fmt = img.format or ""
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as e:
        raise ValidationFailed("Only image files can be uploaded") from e
    return _FORMAT_EXT.get(fmt.upper(), "img")


def job_view(job: RecognitionJob) -> RecognitionJobView:
    if job.status == JobStatus.COMPLETED:
        return RecognitionJobView(
            id=job.id,
            status=job.status,
            detections=job.result_payload or [],
            completed_at=job.completed_at,
        )
    if job.status == JobStatus.FAILED:
        return RecognitionJobView(
            id=job.id,
            status=job.status,
            error_message=job.error_message or DEFAULT_FAILURE_MESSAGE,
            completed_at=job.completed_at,
        )
    return RecognitionJobView(id=job.id, status=job.status)


def get_status(db: Session, job_id: str, owner_id: str) -> RecognitionJobView:
    job = db.get(RecognitionJob, job_id)
    if job is None:
        raise NotFound("Recognition job not found")
    if job.owner_id != owner_id:
        raise Forbidden("Recognition job belongs to another user")
    return job_view(job)


class RecognitionPipeline:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        gateway: ComputeGateway,
        storage: UploadStore,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.storage = storage

    def submit(
        self,
        db: Session,
        owner_id: str,
        image_bytes: bytes,
        filename: Optional[str] = None,
    ) -> RecognitionJob:
        ext = _sniff_image(image_bytes)
        image_ref = f"uploads/{owner_id}/{uuid.uuid4().hex}.{ext}"
        self.storage.put_bytes(image_ref, image_bytes, content_type=f"image/{ext}")

        job = RecognitionJob(
            owner_id=owner_id,
            image_ref=image_ref,
            original_filename=filename,
            status=JobStatus.PENDING,
        )
        try:
            db.add(job)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            self.storage.delete(image_ref)
            logger.error(f"[User:{owner_id}] could not record recognition job: {e}")
            raise Internal("Could not record recognition job") from e

        db.refresh(job)
        logger.info(f"[User:{owner_id}] recognition job {job.id} queued")
        return job

    def run(self, job_id: str, image_ref: str) -> None:
        """Background entry point for a freshly submitted job."""
        claimed = self._mark_processing(job_id)
        if claimed is False:
            logger.info(f"[Job:{job_id}] no longer pending, skipping")
            return
        self.process(job_id, image_ref)

    def process(self, job_id: str, image_ref: str) -> str:
        """execute() for a job already marked PROCESSING. Never raises.

        Errors outside the gateway contract (storage backend, bugs) still end
        the job as FAILED so it cannot stay PROCESSING.
        """
        try:
            return self.execute(job_id, image_ref)
        except Exception:
            logger.exception(f"[Job:{job_id}] unexpected error in recognition task")
            return self._fail(job_id, image_ref, DEFAULT_FAILURE_MESSAGE)

    def _mark_processing(self, job_id: str) -> Optional[bool]:
        """PENDING -> PROCESSING. None means the bookkeeping write itself failed."""
        try:
            with self.session_factory() as db:
                result = db.execute(
                    update(RecognitionJob)
                    .where(RecognitionJob.id == job_id, RecognitionJob.status == JobStatus.PENDING)
                    .values(status=JobStatus.PROCESSING)
                )
                db.commit()
                return result.rowcount == 1
        except SQLAlchemyError as e:
            # Status bookkeeping is decoupled from recognition itself
            logger.error(f"[Job:{job_id}] could not mark PROCESSING, continuing: {e}")
            return None

    def execute(self, job_id: str, image_ref: str) -> str:
        """Run recognition for an already claimed job and record the outcome."""
        try:
            image_bytes = self.storage.get_bytes(image_ref)
        except OSError as e:
            logger.error(f"[Job:{job_id}] image {image_ref} unreadable: {e}")
            return self._fail(job_id, image_ref, "Uploaded image is no longer available")

        logger.info(f"[Job:{job_id}] running recognition")
        try:
            result = self.gateway.invoke(WorkerKind.RECOGNITION, image_bytes)
        except GatewayError as e:
            logger.error(f"[Job:{job_id}] gateway error: {e.message}")
            return self._fail(job_id, image_ref, e.message)

        try:
            detections = normalize_detections(result)
        except MalformedResult as e:
            logger.warning(f"[Job:{job_id}] recognition unsuccessful: {e}")
            return self._fail(job_id, image_ref, str(e))

        self._finish(job_id, JobStatus.COMPLETED, result_payload=detections)
        logger.info(f"[Job:{job_id}] completed with {len(detections)} detection(s)")
        return JobStatus.COMPLETED

    def _fail(self, job_id: str, image_ref: str, message: str) -> str:
        if not self._finish(job_id, JobStatus.FAILED, error_message=message):
            # someone else recorded the outcome; the image belongs to that result
            return JobStatus.FAILED
        if not self.storage.delete(image_ref):
            logger.error(f"[Job:{job_id}] could not remove image {image_ref}")
        return JobStatus.FAILED

    def _finish(
        self,
        job_id: str,
        status: str,
        result_payload: Optional[list] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        values: dict[str, Any] = {"status": status, "completed_at": datetime.now(timezone.utc)}
        if status == JobStatus.COMPLETED:
            values["result_payload"] = result_payload
        else:
            values["error_message"] = error_message
        try:
            with self.session_factory() as db:
                result = db.execute(
                    update(RecognitionJob)
                    .where(RecognitionJob.id == job_id, RecognitionJob.status.in_(JobStatus.ACTIVE))
                    .values(**values)
                )
                db.commit()
        except SQLAlchemyError as e:
            logger.error(f"[Job:{job_id}] could not record {status}: {e}")
            return False

        if result.rowcount != 1:
            logger.warning(f"[Job:{job_id}] already terminal, {status} not recorded")
            return False
        return True


def claim_stale_job(db: Session, older_than: datetime, worker_id: str) -> Optional[RecognitionJob]:
    """Claim the oldest PENDING job created before `older_than`.

    Uses FOR UPDATE SKIP LOCKED so concurrent sweepers never pick the same row.
    """
    stmt = (
        select(RecognitionJob)
        .where(RecognitionJob.status == JobStatus.PENDING, RecognitionJob.created_at <= older_than)
        .order_by(RecognitionJob.created_at)
        .limit(1)
        .with_for_update(skip_locked=True)
    )
    try:
        job = db.execute(stmt).scalar_one_or_none()
        if job is None:
            db.rollback()
            return None
        job.status = JobStatus.PROCESSING
        db.commit()
        db.refresh(job)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"[{worker_id}] error claiming job: {e}")
        return None

    logger.info(f"[{worker_id}] claimed stale job {job.id}")
    return job
