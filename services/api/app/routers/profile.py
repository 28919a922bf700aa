"""
Router for the caller's allergy and tool sets.

PUT replaces the whole set; there is no incremental add/remove.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..deps import get_current_user, get_db, get_master_data
from ..models import User
from ..schemas import MembershipOut, MembershipUpdate
from ..services import catalog
from ..services.catalog import MasterDataTable

router = APIRouter()


@router.get("/profile/allergies", response_model=MembershipOut)
def get_allergies(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return MembershipOut(names=catalog.list_user_allergies(db, user.id))


@router.put("/profile/allergies", response_model=MembershipOut)
def replace_allergies(
    update: MembershipUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    table: MasterDataTable = Depends(get_master_data),
):
    """Replace the allergy set. Unknown names reject the whole update."""
    names = catalog.replace_user_allergies(db, user.id, update.names, table)
    return MembershipOut(names=names)


@router.get("/profile/tools", response_model=MembershipOut)
def get_tools(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return MembershipOut(names=catalog.list_user_tools(db, user.id))


@router.put("/profile/tools", response_model=MembershipOut)
def replace_tools(
    update: MembershipUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    table: MasterDataTable = Depends(get_master_data),
):
    """Replace the tool set. Unknown names reject the whole update."""
    names = catalog.replace_user_tools(db, user.id, update.names, table)
    return MembershipOut(names=names)
