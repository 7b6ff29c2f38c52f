"""Owner-scoped record access used by the pipeline."""

import json
from typing import List, Optional

from sqlmodel import Session, select

from .models import ActivityLog, Batch, Certificate, Document, Signature, Template


class RecordStore:
    def __init__(self, session: Session):
        self.session = session

    def _owned(self, model, record_id: Optional[int], owner_id: int):
        if record_id is None:
            return None
        record = self.session.get(model, record_id)
        if record is None or record.user_id != owner_id:
            return None
        return record

    def save(self, record):
        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        return record

    def delete(self, record):
        self.session.delete(record)
        self.session.commit()

    # templates
    def get_template(self, owner_id: int, template_id: int) -> Optional[Template]:
        return self._owned(Template, template_id, owner_id)

    def list_templates(self, owner_id: int) -> List[Template]:
        return self.session.exec(
            select(Template).where(Template.user_id == owner_id).order_by(Template.created_at.desc())
        ).all()

    def find_template_by_name(self, owner_id: int, name: str) -> Optional[Template]:
        return self.session.exec(
            select(Template).where(Template.user_id == owner_id, Template.name == name)
        ).first()

    # certificates
    def get_certificate(self, owner_id: int, certificate_id: int) -> Optional[Certificate]:
        return self._owned(Certificate, certificate_id, owner_id)

    def list_certificates(self, owner_id: int) -> List[Certificate]:
        return self.session.exec(
            select(Certificate).where(Certificate.user_id == owner_id).order_by(Certificate.created_at.desc())
        ).all()

    # batches and documents
    def get_batch(self, owner_id: int, batch_id: int) -> Optional[Batch]:
        return self._owned(Batch, batch_id, owner_id)

    def get_document(self, owner_id: int, document_id: int) -> Optional[Document]:
        return self._owned(Document, document_id, owner_id)

    def list_documents(self, owner_id: int, batch_id: Optional[int] = None) -> List[Document]:
        stmt = select(Document).where(Document.user_id == owner_id)
        if batch_id is not None:
            stmt = stmt.where(Document.batch_id == batch_id).order_by(Document.id)
        else:
            stmt = stmt.order_by(Document.created_at.desc())
        return self.session.exec(stmt).all()

    def list_signatures(self, owner_id: int, document_id: int) -> List[Signature]:
        return self.session.exec(
            select(Signature)
            .where(Signature.user_id == owner_id, Signature.document_id == document_id)
            .order_by(Signature.id)
        ).all()

    # activity
    def log_activity(
        self,
        owner_id: int,
        type_: str,
        action: str,
        status: str,
        message: str,
        ref_id: Optional[int] = None,
        details=None,
        document_name: Optional[str] = None,
        template: Optional[str] = None,
    ) -> ActivityLog:
        if details is not None and not isinstance(details, str):
            details = json.dumps(details, default=str)
        entry = ActivityLog(
            user_id=owner_id, type=type_, action=action, status=status, message=message,
            ref_id=ref_id, details=details, document_name=document_name, template=template,
        )
        return self.save(entry)

    def list_activity(self, owner_id: int, limit: int = 100) -> List[ActivityLog]:
        return self.session.exec(
            select(ActivityLog)
            .where(ActivityLog.user_id == owner_id)
            .order_by(ActivityLog.id.desc())
            .limit(limit)
        ).all()
