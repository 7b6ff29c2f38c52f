import io
import zipfile

import pytest

from docseal.bundling import bundle_batch, entry_name
from docseal.errors import BundleError
from docseal.models import Batch, Document
from docseal.storage import ContentStore
from docseal.store import RecordStore


@pytest.fixture
def content(tmp_path):
    return ContentStore(str(tmp_path / "uploads"))


def add_document(store, content, owner, batch, filename, status, data=b"%PDF-1.4 x"):
    doc = store.save(Document(user_id=owner.id, batch_id=batch.id, filename=filename, status=status))
    if status in ("ready", "signed"):
        doc.storage_ref = content.put(f"documents/{doc.id}.pdf", data)
        store.save(doc)
    return doc


def test_bundle_contains_only_successful_documents(session, owner, content):
    store = RecordStore(session)
    batch = store.save(Batch(user_id=owner.id, label="Lote de Junho", total_documents=4))
    add_document(store, content, owner, batch, "Contrato_1.pdf", "ready", b"%PDF-1")
    add_document(store, content, owner, batch, "Contrato_2.pdf", "signed", b"%PDF-2")
    add_document(store, content, owner, batch, "Contrato_3.pdf", "failed")
    add_document(store, content, owner, batch, "Contrato_1.pdf", "ready", b"%PDF-4")

    filename, data = bundle_batch(store, content, owner.id, batch.id)
    assert filename == "Lote_de_Junho.zip"
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        names = zf.namelist()
        assert names == ["Contrato_1.pdf", "Contrato_2_signed.pdf", "Contrato_1_2.pdf"]
        assert zf.read("Contrato_2_signed.pdf") == b"%PDF-2"


def test_bundle_without_successes_raises(session, owner, content):
    store = RecordStore(session)
    batch = store.save(Batch(user_id=owner.id, label="vazio", total_documents=1))
    add_document(store, content, owner, batch, "a.pdf", "failed")
    with pytest.raises(BundleError):
        bundle_batch(store, content, owner.id, batch.id)


def test_bundle_unknown_batch(session, owner, content):
    with pytest.raises(LookupError):
        bundle_batch(RecordStore(session), content, owner.id, 12345)


def test_entry_names_are_sanitized():
    assert entry_name("../../etc/passwd", False) == "etc_passwd.pdf"
    assert entry_name("contrato final.pdf", True) == "contrato_final_signed.pdf"
