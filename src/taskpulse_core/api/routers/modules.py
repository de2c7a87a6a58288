"""Modules API endpoints."""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from taskpulse_core import crud, schemas
from taskpulse_core.auth import CurrentUser

from ...database import get_db
from ..dependencies import get_current_user
from ..responses import ok

logger = logging.getLogger("taskpulse-core.modules")

router = APIRouter(tags=["modules"])


@router.post("/", response_model=schemas.ApiResponse[schemas.ModuleResponse], status_code=201)
def create_module(
    module_data: schemas.ModuleCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Add a module to a project (admins and managers).

    The module gets the next serial and the code "<project code>M<serial>".
    """
    module = crud.create_module(db, module_data, current_user)
    return ok(schemas.ModuleResponse.model_validate(module))


@router.get("/", response_model=schemas.ApiResponse[list[schemas.ModuleResponse]])
def list_modules(
    project_id: UUID = Query(..., description="Project whose modules to list"),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    modules = crud.list_modules(db, project_id, current_user)
    return ok([schemas.ModuleResponse.model_validate(m) for m in modules])


@router.put("/{module_id}", response_model=schemas.ApiResponse[schemas.ModuleResponse])
def update_module(
    module_id: UUID,
    module_data: schemas.ModuleUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    module = crud.update_module(db, module_id, module_data, current_user)
    return ok(schemas.ModuleResponse.model_validate(module))


@router.delete("/{module_id}", response_model=schemas.ApiResponse[schemas.MessageData])
def delete_module(
    module_id: UUID,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Delete a module; its tasks are kept without a module."""
    crud.delete_module(db, module_id, current_user)
    return ok(schemas.MessageData(message="Module deleted successfully"))
