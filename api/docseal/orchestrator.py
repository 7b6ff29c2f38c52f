"""
Batch Orchestrator
==================
Runs value rows through render -> convert -> (sign) and records outcomes.

Item work runs on a bounded thread pool. Workers only compute; the calling
thread is the single writer of Document/Signature/ActivityLog rows and of the
batch counter, so no record is ever touched from two threads.
"""

import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from . import config
from .certificates import select_active
from .conversion import ConversionEngine
from .errors import PipelineError, SecurityError, SigningError, TemplateError
from .logger import get_logger
from .models import (
    Batch, BatchStatus, Certificate, Document, DocumentStatus, Signature,
    SignatureStatus, SUCCESSFUL_STATUSES, Template,
)
from .signing import PROVIDER, SigningEngine
from .storage import ContentStore
from .store import RecordStore
from .templating import TemplateRenderer
from .utils import canonical_json, safe_filename

log = get_logger(__name__)

PDF_MAGIC = b"%PDF-"


@dataclass
class ItemResult:
    index: int
    document_id: int
    filename: str
    status: str
    error: Optional[str] = None


@dataclass
class GenerationResult:
    batch: Optional[Batch]
    items: List[ItemResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.items if item.status in SUCCESSFUL_STATUSES)

    @property
    def failed(self) -> int:
        return len(self.items) - self.succeeded


@dataclass
class _Outcome:
    index: int
    artifact: Optional[bytes] = None
    signed: bool = False
    signed_at: Optional[datetime] = None
    stage: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class _SigningMaterial:
    certificate_id: int
    container: Optional[bytes]
    encrypted_secret: str
    load_error: Optional[str] = None


def aggregate_status(total: int, succeeded: int) -> str:
    if total and succeeded == total:
        return BatchStatus.COMPLETED.value
    if succeeded == 0:
        return BatchStatus.FAILED.value
    return BatchStatus.PARTIAL.value


class BatchOrchestrator:
    def __init__(
        self,
        store: RecordStore,
        content: ContentStore,
        renderer: TemplateRenderer,
        engine: ConversionEngine,
        signer: SigningEngine,
        max_workers: Optional[int] = None,
    ):
        self.store = store
        self.content = content
        self.renderer = renderer
        self.engine = engine
        self.signer = signer
        self.max_workers = max(1, max_workers or config.BATCH_MAX_WORKERS)

    # certificates

    def resolve_certificate(
        self, owner_id: int, certificate_id: Optional[int], auto_sign: bool = False, now: Optional[datetime] = None
    ) -> Optional[Certificate]:
        if certificate_id is not None:
            certificate = self.store.get_certificate(owner_id, certificate_id)
            if certificate is None:
                raise LookupError("certificate not found")
            return certificate
        if auto_sign:
            certificate = select_active(self.store.list_certificates(owner_id), now)
            if certificate is None:
                raise ValueError("no valid certificate available for signing")
            return certificate
        return None

    def _signing_material(self, certificate: Optional[Certificate]) -> Optional[_SigningMaterial]:
        if certificate is None:
            return None
        try:
            container = self.content.get(certificate.storage_ref)
            load_error = None
        except (OSError, SecurityError) as exc:
            container, load_error = None, f"certificate container unavailable: {exc}"
        return _SigningMaterial(
            certificate_id=certificate.id,
            container=container,
            encrypted_secret=certificate.encrypted_password or "",
            load_error=load_error,
        )

    # generation

    def generate(
        self,
        owner_id: int,
        template_id: int,
        rows: Sequence[Mapping[str, Any]],
        certificate_id: Optional[int] = None,
        auto_sign: bool = False,
        label: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> GenerationResult:
        if not rows:
            raise ValueError("at least one value row is required")
        template = self.store.get_template(owner_id, template_id)
        if template is None:
            raise LookupError("template not found")
        certificate = self.resolve_certificate(owner_id, certificate_id, auto_sign, now)
        material = self._signing_material(certificate)

        source, source_error = None, None
        try:
            source = self.content.get(template.storage_ref)
        except (OSError, SecurityError) as exc:
            source_error = str(TemplateError(f"template source unreadable: {exc}"))

        batch = None
        if len(rows) > 1:
            batch = self.store.save(Batch(
                user_id=owner_id,
                label=label or f"Batch_{template.name}_{datetime.now(timezone.utc):%Y-%m-%d}",
                template_id=template.id,
                total_documents=len(rows),
            ))

        documents = self._create_documents(owner_id, template, batch, rows)
        log.info(
            "Generating {} document(s) from template {} (batch={}, signing={})",
            len(documents), template.id, batch.id if batch else None, certificate.id if certificate else None,
        )

        results: Dict[int, ItemResult] = {}
        for outcome in self._run(documents, rows, source, source_error, material):
            document = documents[outcome.index]
            results[outcome.index] = self._record(owner_id, template, batch, document, outcome, material)

        if batch is not None:
            succeeded = batch.completed_documents
            batch.status = aggregate_status(batch.total_documents, succeeded)
            self.store.save(batch)
            self.store.log_activity(
                owner_id, "batch", "batch_generated",
                "success" if batch.status == BatchStatus.COMPLETED.value else (
                    "warning" if batch.status == BatchStatus.PARTIAL.value else "error"),
                f'Batch "{batch.label}" finished: {succeeded}/{batch.total_documents} documents generated',
                ref_id=batch.id, template=template.name,
            )
            log.info("Batch {} finished with status {} ({}/{})", batch.id, batch.status, succeeded, batch.total_documents)

        return GenerationResult(batch=batch, items=[results[i] for i in sorted(results)])

    def _create_documents(self, owner_id: int, template: Template, batch: Optional[Batch], rows) -> List[Document]:
        stem = safe_filename(template.name, fallback="document")
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        documents = []
        for index, row in enumerate(rows):
            filename = f"{stem}_{index + 1}.pdf" if batch else f"{stem}_{stamp}.pdf"
            documents.append(self.store.save(Document(
                user_id=owner_id,
                template_id=template.id,
                batch_id=batch.id if batch else None,
                filename=filename,
                status=DocumentStatus.PROCESSING.value,
                variables_json=canonical_json(dict(row or {})),
                source="template",
            )))
        return documents

    def _run(self, documents, rows, source, source_error, material):
        jobs = [(index, documents[index].filename, rows[index]) for index in range(len(documents))]
        workers = min(self.max_workers, len(jobs))
        if workers <= 1:
            for job in jobs:
                yield self._process(*job, source, source_error, material)
            return
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="docseal-item") as pool:
            futures = [pool.submit(self._process, *job, source, source_error, material) for job in jobs]
            for future in as_completed(futures):
                yield future.result()

    def _process(self, index, filename, row, source, source_error, material) -> _Outcome:
        stage = "render"
        try:
            if source_error:
                raise TemplateError(source_error)
            populated = self.renderer.render(source, dict(row or {}))
            stage = "convert"
            artifact = self.engine.convert(populated, f"{os.path.splitext(filename)[0]}.docx")
            if material is None:
                return _Outcome(index=index, artifact=artifact)
            stage = "sign"
            if material.load_error:
                raise SigningError("unlock", material.load_error)
            signed_at = datetime.now(timezone.utc)
            artifact = self.signer.sign(artifact, material.container, material.encrypted_secret, signed_at=signed_at)
            return _Outcome(index=index, artifact=artifact, signed=True, signed_at=signed_at)
        except PipelineError as exc:
            log.warning("Item {} failed at {}: {}", index + 1, stage, exc)
            return _Outcome(index=index, stage=stage, error=str(exc))
        except Exception as exc:
            log.exception("Item {} failed at {} with an unexpected error", index + 1)
            return _Outcome(index=index, stage=stage, error=f"unexpected error: {exc}")

    def _record(self, owner_id, template, batch, document, outcome: _Outcome, material) -> ItemResult:
        if outcome.error is None:
            ref = f"documents/{document.id}.pdf"
            try:
                self.content.put(ref, outcome.artifact)
            except (OSError, SecurityError) as exc:
                outcome = _Outcome(index=outcome.index, stage="store", error=f"could not store artifact: {exc}")

        if outcome.error is None:
            document.storage_ref = ref
            document.status = DocumentStatus.SIGNED.value if outcome.signed else DocumentStatus.READY.value
            document.error_message = None
            self.store.save(document)
            if outcome.signed:
                self.store.save(Signature(
                    user_id=owner_id, document_id=document.id, certificate_id=material.certificate_id,
                    provider=PROVIDER, status=SignatureStatus.COMPLETED.value, signed_at=outcome.signed_at,
                ))
            if batch is not None:
                batch.completed_documents = min(batch.total_documents, batch.completed_documents + 1)
                self.store.save(batch)
            self.store.log_activity(
                owner_id, "document", "document_signed" if outcome.signed else "document_generated", "success",
                f'Document "{document.filename}" {"generated and signed" if outcome.signed else "generated"}',
                ref_id=document.id, document_name=document.filename, template=template.name,
            )
        else:
            document.status = DocumentStatus.FAILED.value
            document.error_message = outcome.error
            self.store.save(document)
            if outcome.stage == "sign":
                self.store.save(Signature(
                    user_id=owner_id, document_id=document.id, certificate_id=material.certificate_id,
                    provider=PROVIDER, status=SignatureStatus.FAILED.value, error_message=outcome.error,
                ))
            self.store.log_activity(
                owner_id, "document", "document_failed", "error",
                f'Document "{document.filename}" failed during {outcome.stage}',
                ref_id=document.id, details={"stage": outcome.stage, "error": outcome.error},
                document_name=document.filename, template=template.name,
            )
        return ItemResult(
            index=outcome.index, document_id=document.id, filename=document.filename,
            status=document.status, error=document.error_message,
        )

    # existing documents

    def refresh_batch(self, owner_id: int, batch_id: Optional[int]) -> Optional[Batch]:
        batch = self.store.get_batch(owner_id, batch_id) if batch_id is not None else None
        if batch is None:
            return None
        documents = self.store.list_documents(owner_id, batch_id=batch.id)
        succeeded = sum(1 for d in documents if d.status in SUCCESSFUL_STATUSES)
        batch.completed_documents = min(batch.total_documents, succeeded)
        if not any(d.status == DocumentStatus.PROCESSING.value for d in documents):
            batch.status = aggregate_status(batch.total_documents, succeeded)
        return self.store.save(batch)

    def sign_document(
        self, owner_id: int, document_id: int, certificate_id: Optional[int] = None, now: Optional[datetime] = None
    ) -> Tuple[Document, Signature]:
        """Sign a ready document in place. A failed attempt leaves the document failed."""
        document = self.store.get_document(owner_id, document_id)
        if document is None:
            raise LookupError("document not found")
        if document.status != DocumentStatus.READY.value or not document.storage_ref:
            raise ValueError(f"document is {document.status}; only ready documents can be signed")
        certificate = self.resolve_certificate(owner_id, certificate_id, auto_sign=True, now=now)

        signature = self.store.save(Signature(
            user_id=owner_id, document_id=document.id, certificate_id=certificate.id, provider=PROVIDER,
        ))
        try:
            material = self._signing_material(certificate)
            if material.load_error:
                raise SigningError("unlock", material.load_error)
            artifact = self.content.get(document.storage_ref)
            signed_at = datetime.now(timezone.utc)
            signed = self.signer.sign(artifact, material.container, material.encrypted_secret, signed_at=signed_at)
            self.content.put(document.storage_ref, signed)
        except (PipelineError, OSError) as exc:
            message = str(exc)
            signature.status = SignatureStatus.FAILED.value
            signature.error_message = message
            document.status = DocumentStatus.FAILED.value
            document.error_message = message
            self.store.save(signature)
            self.store.save(document)
            self.store.log_activity(
                owner_id, "signature", "document_sign_failed", "error",
                f'Signing of "{document.filename}" failed', ref_id=document.id,
                details={"error": message, "certificate_id": certificate.id}, document_name=document.filename,
            )
            log.warning("Signing document {} failed: {}", document.id, message)
        else:
            signature.status = SignatureStatus.COMPLETED.value
            signature.signed_at = signed_at
            document.status = DocumentStatus.SIGNED.value
            document.error_message = None
            self.store.save(signature)
            self.store.save(document)
            self.store.log_activity(
                owner_id, "signature", "document_signed", "success",
                f'Document "{document.filename}" signed with certificate "{certificate.name}"',
                ref_id=document.id, document_name=document.filename,
            )
        self.refresh_batch(owner_id, document.batch_id)
        return document, signature

    def register_upload(self, owner_id: int, data: bytes, filename: str, mime_type: Optional[str] = None) -> Document:
        if not data.startswith(PDF_MAGIC):
            raise ValueError("uploaded file is not a PDF document")
        document = self.store.save(Document(
            user_id=owner_id,
            filename=safe_filename(filename, fallback="upload.pdf"),
            status=DocumentStatus.PROCESSING.value,
            source="upload",
            original_filename=filename,
            mime_type=mime_type or "application/pdf",
        ))
        ref = f"documents/{document.id}.pdf"
        self.content.put(ref, data)
        document.storage_ref = ref
        document.status = DocumentStatus.READY.value
        self.store.save(document)
        self.store.log_activity(
            owner_id, "document", "document_uploaded", "success",
            f'Document "{document.filename}" uploaded', ref_id=document.id, document_name=document.filename,
        )
        return document
