"""Zip bundle of a batch's successful documents."""

import io
import os
import zipfile
from typing import Tuple

from .errors import BundleError, SecurityError
from .logger import get_logger
from .models import DocumentStatus, SUCCESSFUL_STATUSES
from .utils import safe_filename

log = get_logger(__name__)


def entry_name(filename: str, signed: bool) -> str:
    stem, ext = os.path.splitext(safe_filename(filename))
    ext = ext or ".pdf"
    if signed and not stem.endswith("_signed"):
        stem = f"{stem}_signed"
    return f"{stem}{ext}"


def _dedupe(name: str, taken: set) -> str:
    if name not in taken:
        return name
    stem, ext = os.path.splitext(name)
    n = 2
    while f"{stem}_{n}{ext}" in taken:
        n += 1
    return f"{stem}_{n}{ext}"


def bundle_batch(store, content, owner_id: int, batch_id: int) -> Tuple[str, bytes]:
    """Return ``(zip_filename, zip_bytes)``; raises LookupError or BundleError."""
    batch = store.get_batch(owner_id, batch_id)
    if batch is None:
        raise LookupError("batch not found")
    documents = [
        d for d in store.list_documents(owner_id, batch_id=batch.id)
        if d.status in SUCCESSFUL_STATUSES and d.storage_ref
    ]
    if not documents:
        raise BundleError("batch has no successful documents to bundle")

    buf = io.BytesIO()
    taken = set()
    added = 0
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for document in documents:
            try:
                data = content.get(document.storage_ref)
            except (OSError, SecurityError) as exc:
                log.warning("Skipping document {} in bundle: {}", document.id, exc)
                continue
            name = _dedupe(entry_name(document.filename, document.status == DocumentStatus.SIGNED.value), taken)
            taken.add(name)
            zf.writestr(name, data)
            added += 1
    if not added:
        raise BundleError("no document files of this batch could be read")

    log.info("Bundled {} document(s) of batch {}", added, batch.id)
    return f"{safe_filename(batch.label, fallback='batch')}.zip", buf.getvalue()
