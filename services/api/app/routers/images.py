"""Image recognition API router.

Endpoints:
- POST /api/images/upload - Store an image and queue a recognition job
- GET /api/images/analysis/{job_id} - Poll job status
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, File, Request, Response, UploadFile, status
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import get_current_user, get_pipeline
from ..models import JobStatus, User
from ..schemas import RecognitionJobCreated, RecognitionJobView
from ..services import recognition
from ..services.recognition import RecognitionPipeline

logger = logging.getLogger("fridgemate.images")

router = APIRouter()
limiter = Limiter(key_func=get_remote_address)


@router.post("/images/upload", response_model=RecognitionJobCreated, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def upload_image(
    request: Request,
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    pipeline: RecognitionPipeline = Depends(get_pipeline),
):
    """Accept an image and return immediately; recognition runs in the background."""
    logger.info(f"[User:{user.id}] upload received ({file.filename})")
    data = file.file.read()

    job = pipeline.submit(db, user.id, data, filename=file.filename)

    # Runs after the response is sent, with its own session
    background_tasks.add_task(pipeline.run, job.id, job.image_ref)

    return RecognitionJobCreated(id=job.id, status=job.status, created_at=job.created_at)


@router.get("/images/analysis/{job_id}", response_model=RecognitionJobView, response_model_exclude_none=True)
def get_analysis(
    job_id: str,
    response: Response,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Poll a recognition job. 202 while it is still running."""
    view = recognition.get_status(db, job_id, user.id)
    if view.status in JobStatus.ACTIVE:
        response.status_code = status.HTTP_202_ACCEPTED
    return view
