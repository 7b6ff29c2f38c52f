from fastapi import APIRouter, Depends, HTTPException, Response, status

from ..auth import resolve_owner
from ..bundling import bundle_batch
from ..deps import get_content, get_store
from ..errors import BundleError
from ..models import User
from ..storage import ContentStore
from ..store import RecordStore

router = APIRouter()

@router.get("/{batch_id}")
def get_batch(batch_id: int, store: RecordStore = Depends(get_store), owner: User = Depends(resolve_owner)):
    batch = store.get_batch(owner.id, batch_id)
    if not batch:
        raise HTTPException(404, "batch not found")
    documents = store.list_documents(owner.id, batch_id=batch.id)
    return {
        "id": batch.id,
        "label": batch.label,
        "template_id": batch.template_id,
        "status": batch.status,
        "total_documents": batch.total_documents,
        "completed_documents": batch.completed_documents,
        "created_at": batch.created_at,
        "documents": [
            {"id": d.id, "filename": d.filename, "status": d.status, "error_message": d.error_message}
            for d in documents
        ],
    }

@router.get("/{batch_id}/bundle")
def download_bundle(
    batch_id: int,
    store: RecordStore = Depends(get_store),
    content: ContentStore = Depends(get_content),
    owner: User = Depends(resolve_owner),
):
    try:
        filename, data = bundle_batch(store, content, owner.id, batch_id)
    except LookupError as exc:
        raise HTTPException(404, str(exc))
    except BundleError as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, str(exc))
    return Response(
        content=data,
        media_type="application/zip",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
