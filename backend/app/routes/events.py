"""Read-only access to indexed events."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.dependencies import get_db
from app.schemas.common import PaginatedResponse
from app.schemas.events import EventResponse, EventStatsResponse
from chainsync.services._helpers import load_json
from chainsync.services.event_store import EventRepository
from db.models import IndexedEvents

router = APIRouter(prefix="/api/indexers", tags=["events"])


def _to_response(row: IndexedEvents) -> EventResponse:
    data = row.to_dict()
    data.pop("created_at", None)
    data["payload"] = load_json(row.payload)
    return EventResponse.model_validate(data)


@router.get("/events", response_model=PaginatedResponse[EventResponse])
def list_events(
    owner: str | None = None,
    wallet: str | None = None,
    start_block: int | None = Query(None, alias="startBlock", ge=0),
    end_block: int | None = Query(None, alias="endBlock", ge=0),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    repo = EventRepository(db)
    rows = repo.list_events(
        indexer=owner,
        wallet=wallet,
        start_block=start_block,
        end_block=end_block,
        limit=limit,
        offset=offset,
    )
    return PaginatedResponse[EventResponse](
        total=repo.count(owner),
        limit=limit,
        offset=offset,
        items=[_to_response(r) for r in rows],
    )


@router.get("/events/stats", response_model=EventStatsResponse)
def event_stats(owner: str | None = None, db: Session = Depends(get_db)):
    return EventStatsResponse.model_validate(EventRepository(db).stats(owner))
