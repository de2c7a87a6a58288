"""Q&A assistant endpoint."""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from taskpulse_core import schemas
from taskpulse_core.auth import CurrentUser
from taskpulse_core.oracle import QAOracle, build_snapshot

from ...database import get_db
from ..dependencies import get_current_user
from ..responses import ok

logger = logging.getLogger("taskpulse-core.bot")

router = APIRouter(tags=["bot"])


def get_oracle() -> QAOracle:
    return QAOracle()


@router.post("/ask", response_model=schemas.ApiResponse[schemas.BotAnswer])
def ask(
    request: schemas.BotAskRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    oracle: QAOracle = Depends(get_oracle),
):
    """
    Answer a question about projects, sprints, deadlines and team workload.

    The assistant only sees a read-only snapshot of the tracker.
    """
    snapshot = build_snapshot(db)
    answer = oracle.ask(request.query, snapshot)
    return ok(schemas.BotAnswer(answer=answer))
