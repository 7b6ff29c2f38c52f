import os
import tempfile
from datetime import datetime, timedelta, timezone
from io import BytesIO
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, Session, create_engine

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="docseal-test-"))
os.environ.setdefault("CERT_ENCRYPTION_KEY", "test-passphrase-for-docseal")
os.environ.setdefault("SIGN_APPEND_SUMMARY", "true")

from cryptography import x509  # noqa: E402
from cryptography.hazmat.primitives import hashes, serialization  # noqa: E402
from cryptography.hazmat.primitives.asymmetric import rsa  # noqa: E402
from cryptography.hazmat.primitives.serialization import pkcs12  # noqa: E402
from cryptography.x509.oid import NameOID  # noqa: E402
from docx import Document as DocxDocument  # noqa: E402
from reportlab.lib.pagesizes import A4  # noqa: E402
from reportlab.pdfgen import canvas  # noqa: E402

from docseal.main import app  # noqa: E402
from docseal import db as db_module  # noqa: E402
from docseal.conversion import ConversionEngine  # noqa: E402
from docseal.db import get_session  # noqa: E402
from docseal.errors import ConversionError  # noqa: E402
from docseal.models import User  # noqa: E402
from docseal.pathguard import ensure_directories  # noqa: E402

ensure_directories()

ACCESS_TOKEN = "user-test-token"
HEADERS = {"X-Access-Token": ACCESS_TOKEN}


def make_pdf(text: str = "Hello") -> bytes:
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    c.drawString(72, 760, text)
    c.showPage()
    c.save()
    return buf.getvalue()


def make_docx(paragraphs=(), table_rows=(), header: Optional[str] = None, split_runs=()) -> bytes:
    """
    Build a DOCX in memory. ``split_runs`` entries are lists of run texts that
    form a single paragraph, used to spread one placeholder over several runs.
    """
    doc = DocxDocument()
    if header is not None:
        doc.sections[0].header.paragraphs[0].text = header
    for text in paragraphs:
        doc.add_paragraph(text)
    for runs in split_runs:
        paragraph = doc.add_paragraph()
        for text in runs:
            paragraph.add_run(text)
    if table_rows:
        table = doc.add_table(rows=len(table_rows), cols=len(table_rows[0]))
        for r, row in enumerate(table_rows):
            for c, text in enumerate(row):
                table.cell(r, c).text = text
    buf = BytesIO()
    doc.save(buf)
    return buf.getvalue()


def docx_text(data: bytes) -> str:
    doc = DocxDocument(BytesIO(data))
    parts = [p.text for p in doc.paragraphs]
    for table in doc.tables:
        for row in table.rows:
            parts.extend(cell.text for cell in row.cells)
    for section in doc.sections:
        parts.extend(p.text for p in section.header.paragraphs)
    return "\n".join(parts)


def make_pkcs12(
    password: Optional[str] = "secret",
    common_name: str = "Test Signer",
    not_before: Optional[datetime] = None,
    not_after: Optional[datetime] = None,
) -> bytes:
    now = datetime.now(timezone.utc)
    not_before = not_before or now - timedelta(days=1)
    not_after = not_after or now + timedelta(days=365)
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([
        x509.NameAttribute(NameOID.COUNTRY_NAME, "BR"),
        x509.NameAttribute(NameOID.COMMON_NAME, common_name),
    ])
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    encryption = (
        serialization.BestAvailableEncryption(password.encode()) if password else serialization.NoEncryption()
    )
    return pkcs12.serialize_key_and_certificates(common_name.encode(), key, cert, None, encryption)


class FakeEngine(ConversionEngine):
    """Renders the populated DOCX text into a one-page PDF; fails on the FAIL marker."""

    name = "fake"

    def __init__(self):
        self.calls = 0

    def convert(self, document: bytes, filename: str = "document.docx") -> bytes:
        self.calls += 1
        text = docx_text(document)
        if "FAIL" in text:
            raise ConversionError(self.name, "engine rejected the document", code=-3)
        return make_pdf(text.replace("\n", " ")[:200])


@pytest.fixture(scope="session")
def pdf_bytes():
    return make_pdf("Contract body")


@pytest.fixture(scope="session")
def p12_bytes():
    return make_pkcs12("secret")


@pytest.fixture(scope="session")
def test_engine(tmp_path_factory):
    db_path = tmp_path_factory.mktemp("data") / "test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    return engine


@pytest.fixture
def setup_db(test_engine):
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def session(test_engine, setup_db):
    with Session(test_engine) as s:
        yield s


@pytest.fixture
def owner(session):
    user = User(email="ana@example.com", name="Ana", access_token=ACCESS_TOKEN)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def client(test_engine, setup_db, owner, fake_engine):
    db_module.engine = test_engine

    def override_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    with TestClient(app) as test_client:
        app.state.engine = fake_engine
        yield test_client
    app.dependency_overrides.clear()
