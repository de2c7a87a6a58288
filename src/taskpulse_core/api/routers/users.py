"""Users API endpoints."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from taskpulse_core import crud, schemas
from taskpulse_core.auth import CurrentUser
from taskpulse_core.models import Role

from ...database import get_db
from ..dependencies import get_current_user, require_roles
from ..responses import ok

logger = logging.getLogger("taskpulse-core.users")

router = APIRouter(tags=["users"])


@router.get("/me", response_model=schemas.ApiResponse[schemas.UserResponse])
def get_me(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """The authenticated caller."""
    return ok(schemas.UserResponse.model_validate(crud.get_user(db, current_user.id)))


@router.get("/", response_model=schemas.ApiResponse[list[schemas.UserResponse]])
def list_users(
    include_inactive: bool = Query(False, description="Include deactivated users"),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    users = crud.list_users(db, include_inactive=include_inactive)
    return ok([schemas.UserResponse.model_validate(u) for u in users])


@router.get("/assignable", response_model=schemas.ApiResponse[list[schemas.UserResponse]])
def list_assignable_users(
    project_id: Optional[UUID] = Query(None, description="Restrict to members of this project"),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Active developers and QA who can take tasks."""
    users = crud.list_assignable_users(db, project_id=project_id)
    return ok([schemas.UserResponse.model_validate(u) for u in users])


@router.post("/", response_model=schemas.ApiResponse[schemas.UserResponse], status_code=201)
def create_user(
    user_data: schemas.UserCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(Role.ADMIN)),
):
    """
    Create a user (admins only).

    - **email**: Unique, stored lowercase
    - **role**: admin, manager (also "pm", "Project Manager"), developer, qa
    """
    user = crud.create_user(db, user_data)
    logger.info(f"User {user.email} created by {current_user.id}")
    return ok(schemas.UserResponse.model_validate(user))
