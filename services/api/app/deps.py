"""FastAPI dependencies for FridgeMate API.

Provides:
- Database session dependency
- Caller resolution (X-User-Id header set by the auth gateway)
- Compute gateway, recognition pipeline and master data lookup table
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from .core.compute_gateway import ComputeGateway, get_gateway
from .db import SessionLocal, get_db
from .models import User
from .services.catalog import MasterDataTable, cached_master_data
from .services.recognition import RecognitionPipeline
from .services.storage import get_storage


def get_current_user(
    db: Session = Depends(get_db),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> User:
    """Resolve the caller.

    Authentication happens upstream; this only checks that the forwarded
    user id exists.

    Raises:
        HTTPException 401 if the header is missing, 404 if the user is unknown
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")

    user = db.get(User, x_user_id)
    if user is None:
        raise HTTPException(status_code=404, detail=f"User '{x_user_id}' not found")
    return user


def get_compute_gateway() -> ComputeGateway:
    return get_gateway()


def get_pipeline(gateway: ComputeGateway = Depends(get_compute_gateway)) -> RecognitionPipeline:
    return RecognitionPipeline(
        session_factory=SessionLocal(),
        gateway=gateway,
        storage=get_storage(),
    )


def get_master_data(db: Session = Depends(get_db)) -> MasterDataTable:
    return cached_master_data(db)
