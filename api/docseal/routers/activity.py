from fastapi import APIRouter, Depends, Query

from ..auth import resolve_owner
from ..deps import get_store
from ..models import User
from ..store import RecordStore

router = APIRouter()

@router.get("")
def list_activity(
    limit: int = Query(default=100, ge=1, le=1000),
    store: RecordStore = Depends(get_store),
    owner: User = Depends(resolve_owner),
):
    return store.list_activity(owner.id, limit)
