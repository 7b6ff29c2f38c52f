from io import BytesIO

import pytest
from pyhanko.pdf_utils.reader import PdfFileReader
from pypdf import PdfReader

from docseal.errors import SigningError
from docseal.secret_codec import get_codec
from docseal.signing import SigningEngine


def page_count(data: bytes) -> int:
    return len(PdfReader(BytesIO(data)).pages)


def test_sign_embeds_pades_signature_and_summary(pdf_bytes, p12_bytes):
    signed = SigningEngine(append_summary_page=True).sign(pdf_bytes, p12_bytes, get_codec().encrypt("secret"))
    assert signed.startswith(b"%PDF-")
    assert page_count(signed) == page_count(pdf_bytes) + 1
    signatures = PdfFileReader(BytesIO(signed)).embedded_signatures
    assert len(signatures) == 1
    assert signatures[0].field_name.startswith("Signature_")


def test_sign_without_summary_keeps_page_count(pdf_bytes, p12_bytes):
    signed = SigningEngine(append_summary_page=False).sign(pdf_bytes, p12_bytes, get_codec().encrypt("secret"))
    assert page_count(signed) == page_count(pdf_bytes)


def test_bad_encrypted_secret_fails_with_secret_reason(pdf_bytes, p12_bytes):
    with pytest.raises(SigningError) as exc:
        SigningEngine().sign(pdf_bytes, p12_bytes, "not:a:token")
    assert exc.value.reason == "secret"


def test_wrong_password_fails_with_unlock_reason(pdf_bytes, p12_bytes):
    with pytest.raises(SigningError) as exc:
        SigningEngine().sign(pdf_bytes, p12_bytes, get_codec().encrypt("wrong"))
    assert exc.value.reason == "unlock"


def test_invalid_pdf_fails_with_signature_reason(p12_bytes):
    with pytest.raises(SigningError) as exc:
        SigningEngine(append_summary_page=False).sign(b"%PDF-1.4 garbage", p12_bytes, get_codec().encrypt("secret"))
    assert exc.value.reason == "signature"
