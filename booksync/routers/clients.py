from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from booksync.core.deps import require_owner
from booksync.db.session import get_session
from booksync.models.identity import Owner
from booksync.schemas.clients import ClientListResponse, ClientOut
from booksync.services.clients import list_clients

router = APIRouter(prefix="/clients", tags=["clients"])


@router.get("", response_model=ClientListResponse)
def clients_list(
    limit: int = Query(default=200, ge=1, le=1000),
    owner: Owner = Depends(require_owner),
    session: Session = Depends(get_session),
) -> ClientListResponse:
    rows = list_clients(session=session, owner_id=owner.id, limit=limit)
    return ClientListResponse(clients=[ClientOut.model_validate(r) for r in rows])
