"""Personal notes API endpoints. Every note is private to its author."""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from taskpulse_core import crud, schemas
from taskpulse_core.auth import CurrentUser

from ...database import get_db
from ..dependencies import get_current_user
from ..responses import ok

logger = logging.getLogger("taskpulse-core.notes")

router = APIRouter(tags=["notes"])


@router.get("/", response_model=schemas.ApiResponse[list[schemas.NoteResponse]])
def list_notes(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """The caller's notes, newest first."""
    return ok([schemas.NoteResponse.model_validate(n) for n in crud.list_notes(db, current_user)])


@router.post("/", response_model=schemas.ApiResponse[schemas.NoteResponse], status_code=201)
def create_note(
    note_data: schemas.NoteCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Create a note.

    - **content_html**: Note body (HTML, required)
    - **color_id**: Sticky color (default: yellow)
    """
    note = crud.create_note(db, note_data, current_user)
    return ok(schemas.NoteResponse.model_validate(note))


@router.put("/{note_id}", response_model=schemas.ApiResponse[schemas.NoteResponse])
def update_note(
    note_id: UUID,
    note_data: schemas.NoteUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Change a note's content or color."""
    note = crud.update_note(db, note_id, note_data, current_user)
    return ok(schemas.NoteResponse.model_validate(note))


@router.delete("/{note_id}", response_model=schemas.ApiResponse[schemas.NoteDeleted])
def delete_note(
    note_id: UUID,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    deleted_id = crud.delete_note(db, note_id, current_user)
    return ok(schemas.NoteDeleted(message="Note deleted successfully", id=deleted_id))
