from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile

from ..auth import resolve_owner
from ..certificates import register_certificate, select_active
from ..deps import get_content, get_store
from ..models import Certificate, User
from ..storage import ContentStore
from ..store import RecordStore

router = APIRouter()

def _serialize(c: Certificate):
    # Never expose the container password, encrypted or not.
    return {
        "id": c.id,
        "name": c.name,
        "type": c.type,
        "subject": c.subject,
        "issuer": c.issuer,
        "serial": c.serial,
        "valid_from": c.valid_from,
        "valid_to": c.valid_to,
        "original_filename": c.original_filename,
        "created_at": c.created_at,
    }

@router.post("")
async def upload_certificate(
    file: UploadFile = File(...),
    name: str = Form(...),
    password: str = Form(default=""),
    type: str = Form(default="A1"),
    store: RecordStore = Depends(get_store),
    content: ContentStore = Depends(get_content),
    owner: User = Depends(resolve_owner),
):
    data = await file.read()
    if not data:
        raise HTTPException(422, "empty certificate file")
    certificate = register_certificate(
        store, content, owner.id, name.strip() or "certificate", data, password,
        type_=type, original_filename=file.filename, mime_type=file.content_type,
    )
    return _serialize(certificate)

@router.get("")
def list_certificates(store: RecordStore = Depends(get_store), owner: User = Depends(resolve_owner)):
    return [_serialize(c) for c in store.list_certificates(owner.id)]

@router.get("/active")
def active_certificate(store: RecordStore = Depends(get_store), owner: User = Depends(resolve_owner)):
    certificate = select_active(store.list_certificates(owner.id))
    if not certificate:
        raise HTTPException(404, "no valid certificate available")
    return _serialize(certificate)

@router.delete("/{certificate_id}")
def delete_certificate(
    certificate_id: int,
    store: RecordStore = Depends(get_store),
    content: ContentStore = Depends(get_content),
    owner: User = Depends(resolve_owner),
):
    certificate = store.get_certificate(owner.id, certificate_id)
    if not certificate:
        raise HTTPException(404, "certificate not found")
    content.delete(certificate.storage_ref)
    name = certificate.name
    store.delete(certificate)
    store.log_activity(
        owner.id, "certificate", "certificate_deleted", "success",
        f'Certificate "{name}" deleted', ref_id=certificate_id,
    )
    return {"ok": True}
