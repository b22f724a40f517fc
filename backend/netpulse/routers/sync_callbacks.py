"""Router receiving acknowledgements from the network access server."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..services import SyncCallbackError, SyncCallbackHandler
from ..services.sync_callbacks import CallbackPathOutcome

router = APIRouter()


def _path_read(outcome: CallbackPathOutcome | None) -> schemas.CallbackPathRead | None:
    if outcome is None:
        return None
    return schemas.CallbackPathRead(
        scope=outcome.scope,
        target_id=outcome.target_id,
        applied=outcome.applied,
        error=outcome.error,
    )


@router.post(
    "/sync-callback",
    response_model=schemas.SyncCallbackResponse,
    responses={207: {"model": schemas.SyncCallbackResponse}},
)
def receive_sync_callback(
    payload: schemas.SyncCallbackPayload, db: Session = Depends(get_db)
):
    """Apply a ``synced``/``failed`` callback.

    Responds 207 when the client or router path could not be applied.
    """

    try:
        result = SyncCallbackHandler(db).handle(payload)
    except SyncCallbackError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    body = schemas.SyncCallbackResponse(
        success=result.success,
        partial=result.partial,
        client=_path_read(result.client),
        router=_path_read(result.router),
        warnings=result.warnings,
    )
    if not result.success:
        return JSONResponse(status_code=207, content=body.model_dump(mode="json"))
    return body
