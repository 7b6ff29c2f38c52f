import json
from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile, status

from ..auth import resolve_owner
from ..deps import get_content, get_orchestrator, get_store
from ..models import Document, User
from ..orchestrator import BatchOrchestrator
from ..schemas import GenerateRequest, SignRequest
from ..storage import ContentStore
from ..store import RecordStore

router = APIRouter()

def _serialize(d: Document):
    return {
        "id": d.id,
        "filename": d.filename,
        "status": d.status,
        "source": d.source,
        "template_id": d.template_id,
        "batch_id": d.batch_id,
        "variables": json.loads(d.variables_json) if d.variables_json else None,
        "error_message": d.error_message,
        "created_at": d.created_at,
    }

@router.post("/generate")
def generate_documents(
    payload: GenerateRequest,
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
    owner: User = Depends(resolve_owner),
):
    try:
        result = orchestrator.generate(
            owner.id,
            payload.template_id,
            payload.value_rows(),
            certificate_id=payload.certificate_id,
            auto_sign=payload.auto_sign,
            label=payload.label,
        )
    except LookupError as exc:
        raise HTTPException(404, str(exc))
    except ValueError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(exc))
    batch = result.batch
    return {
        "batch": {
            "id": batch.id,
            "label": batch.label,
            "status": batch.status,
            "total_documents": batch.total_documents,
            "completed_documents": batch.completed_documents,
        } if batch else None,
        "succeeded": result.succeeded,
        "failed": result.failed,
        "items": [
            {
                "index": item.index,
                "document_id": item.document_id,
                "filename": item.filename,
                "status": item.status,
                "error": item.error,
            }
            for item in result.items
        ],
    }

@router.post("/upload")
async def upload_document(
    file: UploadFile = File(...),
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
    owner: User = Depends(resolve_owner),
):
    data = await file.read()
    try:
        document = orchestrator.register_upload(owner.id, data, file.filename or "upload.pdf", file.content_type)
    except ValueError as exc:
        raise HTTPException(422, str(exc))
    return _serialize(document)

@router.get("")
def list_documents(store: RecordStore = Depends(get_store), owner: User = Depends(resolve_owner)):
    return [_serialize(d) for d in store.list_documents(owner.id)]

@router.get("/{document_id}")
def get_document(document_id: int, store: RecordStore = Depends(get_store), owner: User = Depends(resolve_owner)):
    document = store.get_document(owner.id, document_id)
    if not document:
        raise HTTPException(404, "document not found")
    out = _serialize(document)
    out["signatures"] = [
        {
            "id": s.id,
            "certificate_id": s.certificate_id,
            "provider": s.provider,
            "status": s.status,
            "signed_at": s.signed_at,
            "error_message": s.error_message,
        }
        for s in store.list_signatures(owner.id, document.id)
    ]
    return out

@router.get("/{document_id}/file")
def download_document(
    document_id: int,
    store: RecordStore = Depends(get_store),
    content: ContentStore = Depends(get_content),
    owner: User = Depends(resolve_owner),
):
    document = store.get_document(owner.id, document_id)
    if not document or not document.storage_ref:
        raise HTTPException(404, "document not found")
    try:
        data = content.get(document.storage_ref)
    except FileNotFoundError:
        raise HTTPException(404, "document file missing")
    return Response(
        content=data,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{document.filename}"'},
    )

@router.post("/{document_id}/sign")
def sign_document(
    document_id: int,
    payload: SignRequest,
    orchestrator: BatchOrchestrator = Depends(get_orchestrator),
    owner: User = Depends(resolve_owner),
):
    try:
        document, signature = orchestrator.sign_document(owner.id, document_id, payload.certificate_id)
    except LookupError as exc:
        raise HTTPException(404, str(exc))
    except ValueError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, str(exc))
    out = _serialize(document)
    out["signature"] = {"id": signature.id, "status": signature.status, "error_message": signature.error_message}
    return out
