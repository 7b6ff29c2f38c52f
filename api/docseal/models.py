from enum import Enum
from typing import Optional
from datetime import datetime
from sqlmodel import SQLModel, Field as ORMField


class DocumentStatus(str, Enum):
    PROCESSING = "processing"
    READY = "ready"
    SIGNED = "signed"
    FAILED = "failed"


class BatchStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class SignatureStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


SUCCESSFUL_STATUSES = (DocumentStatus.READY.value, DocumentStatus.SIGNED.value)


class User(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    email: str
    name: str
    access_token: Optional[str] = ORMField(default=None, index=True)
    created_at: datetime = ORMField(default_factory=datetime.utcnow)

class Template(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    user_id: int = ORMField(index=True)
    name: str
    storage_ref: str
    variables_json: str = "[]"  # ordered placeholder names
    original_filename: Optional[str] = None
    mime_type: Optional[str] = None
    created_at: datetime = ORMField(default_factory=datetime.utcnow)

class Certificate(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    user_id: int = ORMField(index=True)
    name: str
    storage_ref: str
    encrypted_password: Optional[str] = None
    password_hash: Optional[str] = None  # legacy, never used for signing
    type: str = "A1"  # A1 (software) | A3 (hardware-backed)
    subject: Optional[str] = None
    issuer: Optional[str] = None
    serial: Optional[str] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    original_filename: Optional[str] = None
    mime_type: Optional[str] = None
    created_at: datetime = ORMField(default_factory=datetime.utcnow)

class Batch(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    user_id: int = ORMField(index=True)
    label: str
    template_id: Optional[int] = None
    status: str = BatchStatus.PROCESSING.value
    total_documents: int = 0
    completed_documents: int = 0
    created_at: datetime = ORMField(default_factory=datetime.utcnow)

class Document(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    user_id: int = ORMField(index=True)
    template_id: Optional[int] = ORMField(default=None, index=True)
    batch_id: Optional[int] = ORMField(default=None, index=True)
    filename: str
    status: str = DocumentStatus.PROCESSING.value
    storage_ref: Optional[str] = None
    variables_json: Optional[str] = None
    source: str = "template"  # template|upload
    original_filename: Optional[str] = None
    mime_type: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = ORMField(default_factory=datetime.utcnow)

class Signature(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    user_id: int = ORMField(index=True)
    document_id: int = ORMField(index=True)
    certificate_id: Optional[int] = None
    provider: str = "pyhanko/PAdES"
    status: str = SignatureStatus.PROCESSING.value
    signed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: datetime = ORMField(default_factory=datetime.utcnow)

class ActivityLog(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    user_id: int = ORMField(index=True)
    type: str    # template|certificate|document|signature|batch|system
    action: str  # document_generated|document_signed|template_uploaded|...
    ref_id: Optional[int] = None
    status: str  # success|error|warning
    message: str
    details: Optional[str] = None
    document_name: Optional[str] = None
    template: Optional[str] = None
    created_at: datetime = ORMField(default_factory=datetime.utcnow)
