import json
import os
from typing import Optional
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from ..auth import resolve_owner
from ..deps import get_content, get_store
from ..errors import TemplateError
from ..logger import get_logger
from ..models import Template, User
from ..schemas import TemplateRename
from ..storage import ContentStore
from ..store import RecordStore
from ..templating import extract_placeholders

log = get_logger(__name__)

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

router = APIRouter()

def _serialize(t: Template):
    return {
        "id": t.id,
        "name": t.name,
        "variables": json.loads(t.variables_json or "[]"),
        "original_filename": t.original_filename,
        "mime_type": t.mime_type,
        "created_at": t.created_at,
    }

def _get_or_404(store: RecordStore, owner: User, template_id: int) -> Template:
    template = store.get_template(owner.id, template_id)
    if not template:
        raise HTTPException(404, "template not found")
    return template

@router.post("")
async def upload_template(
    file: UploadFile = File(...),
    name: Optional[str] = Form(default=None),
    store: RecordStore = Depends(get_store),
    content: ContentStore = Depends(get_content),
    owner: User = Depends(resolve_owner),
):
    filename = file.filename or "template.docx"
    if os.path.splitext(filename)[1].lower() != ".docx":
        raise HTTPException(422, "only .docx templates are supported")
    data = await file.read()
    try:
        variables = extract_placeholders(data)
    except TemplateError as exc:
        raise HTTPException(422, str(exc))

    name = (name or os.path.splitext(filename)[0]).strip()
    if store.find_template_by_name(owner.id, name):
        raise HTTPException(status.HTTP_409_CONFLICT, "template name already exists")

    ref = content.new_ref("templates", filename, default_ext=".docx")
    content.put(ref, data)
    template = store.save(Template(
        user_id=owner.id,
        name=name,
        storage_ref=ref,
        variables_json=json.dumps(variables),
        original_filename=filename,
        mime_type=file.content_type or DOCX_MIME,
    ))
    store.log_activity(
        owner.id, "template", "template_uploaded", "success",
        f'Template "{name}" uploaded with {len(variables)} variable(s)',
        ref_id=template.id, template=name,
    )
    log.info("Template {} uploaded by user {}", template.id, owner.id)
    return _serialize(template)

@router.get("")
def list_templates(store: RecordStore = Depends(get_store), owner: User = Depends(resolve_owner)):
    return [_serialize(t) for t in store.list_templates(owner.id)]

@router.get("/{template_id}")
def get_template(template_id: int, store: RecordStore = Depends(get_store), owner: User = Depends(resolve_owner)):
    return _serialize(_get_or_404(store, owner, template_id))

@router.patch("/{template_id}")
def rename_template(
    template_id: int,
    payload: TemplateRename,
    store: RecordStore = Depends(get_store),
    owner: User = Depends(resolve_owner),
):
    template = _get_or_404(store, owner, template_id)
    name = payload.name.strip()
    if not name:
        raise HTTPException(422, "name must not be empty")
    other = store.find_template_by_name(owner.id, name)
    if other and other.id != template.id:
        raise HTTPException(status.HTTP_409_CONFLICT, "template name already exists")
    old = template.name
    template.name = name
    store.save(template)
    store.log_activity(
        owner.id, "template", "template_renamed", "success",
        f'Template "{old}" renamed to "{name}"', ref_id=template.id, template=name,
    )
    return _serialize(template)

@router.delete("/{template_id}")
def delete_template(
    template_id: int,
    store: RecordStore = Depends(get_store),
    content: ContentStore = Depends(get_content),
    owner: User = Depends(resolve_owner),
):
    template = _get_or_404(store, owner, template_id)
    content.delete(template.storage_ref)
    name = template.name
    store.delete(template)
    store.log_activity(
        owner.id, "template", "template_deleted", "success",
        f'Template "{name}" deleted', ref_id=template_id, template=name,
    )
    return {"ok": True}
