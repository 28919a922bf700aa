"""Stale recognition job sweeper.

Uploads schedule their recognition run as a background task of the request.
If the API process dies before that task runs, the job stays PENDING. This
worker polls for such jobs and runs them:
1. Claims the oldest stale PENDING job with `FOR UPDATE SKIP LOCKED` (Postgres)
2. Sets status=PROCESSING in the claiming transaction
3. Runs recognition through the compute gateway and records the outcome

Usage:
    python -m app.worker
"""

import logging
import time
import uuid
from datetime import datetime, timedelta, timezone

from .core.compute_gateway import get_gateway
from .db import init_engine, SessionLocal
from .services.recognition import RecognitionPipeline, claim_stale_job
from .services.storage import get_storage
from .settings import settings

logger = logging.getLogger("fridgemate.worker")

WORKER_ID = f"worker-{uuid.uuid4().hex[:8]}"


def sweep_once(pipeline: RecognitionPipeline, stale_after_seconds: int) -> int:
    """Run every stale PENDING job currently claimable. Returns how many ran."""
    processed = 0
    while True:
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=stale_after_seconds)
        with pipeline.session_factory() as db:
            job = claim_stale_job(db, cutoff, WORKER_ID)
            if job is None:
                return processed
            job_id, image_ref = job.id, job.image_ref
        outcome = pipeline.process(job_id, image_ref)
        logger.info(f"[{WORKER_ID}] job {job_id} -> {outcome}")
        processed += 1


def main():
    """Main worker loop."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    logger.info(f"[{WORKER_ID}] Starting (Poll: {settings.poll_interval_seconds}s)")

    init_engine()
    pipeline = RecognitionPipeline(
        session_factory=SessionLocal(),
        gateway=get_gateway(),
        storage=get_storage(),
    )

    while True:
        try:
            sweep_once(pipeline, settings.stale_job_seconds)
        except Exception:
            logger.exception(f"[{WORKER_ID}] Loop error")
            time.sleep(1)

        time.sleep(settings.poll_interval_seconds)


if __name__ == "__main__":
    main()
