"""
Certificate vault: PKCS#12 inspection and signing-certificate selection.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives.serialization import pkcs12

from .errors import ParseError
from .logger import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class CertificateInfo:
    subject: str
    issuer: str
    valid_from: datetime
    valid_to: datetime
    serial: str


def format_name(name: x509.Name) -> str:
    return ", ".join(f"{attr.rfc4514_attribute_name}={attr.value}" for attr in name)


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def load_container(container: bytes, password: Optional[str]) -> Tuple[Any, x509.Certificate, list]:
    """Unlock a PKCS#12 bundle; returns (private_key, certificate, extra_certificates)."""
    secret = password.encode("utf-8") if password else None
    try:
        key, cert, extra = pkcs12.load_key_and_certificates(container, secret)
    except (ValueError, TypeError) as exc:
        raise ParseError(f"cannot open certificate container: {exc}") from exc
    if cert is None:
        raise ParseError("no certificate found in container")
    return key, cert, list(extra or [])


def read_info(container: bytes, password: Optional[str]) -> CertificateInfo:
    _, cert, _ = load_container(container, password)
    return CertificateInfo(
        subject=format_name(cert.subject),
        issuer=format_name(cert.issuer),
        valid_from=_utc(cert.not_valid_before_utc),
        valid_to=_utc(cert.not_valid_after_utc),
        serial=format(cert.serial_number, "x"),
    )


def _as_datetime(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _utc(value)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return _utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def validity_window(candidate) -> Optional[Tuple[datetime, datetime]]:
    start = _as_datetime(getattr(candidate, "valid_from", None))
    end = _as_datetime(getattr(candidate, "valid_to", None))
    if start is None or end is None or start > end:
        return None
    return start, end


def select_active(candidates: Iterable, now: Optional[datetime] = None):
    """
    Pick the certificate to sign with.

    Candidates without a parseable validity window, or whose window does not
    contain ``now``, are skipped. Among the rest the one expiring soonest wins.
    """
    now = _utc(now or datetime.now(timezone.utc))
    best, best_end = None, None
    for candidate in candidates:
        window = validity_window(candidate)
        if window is None:
            continue
        start, end = window
        if not start <= now <= end:
            continue
        if best_end is None or end < best_end:
            best, best_end = candidate, end
    return best


def register_certificate(
    store,
    content,
    owner_id: int,
    name: str,
    data: bytes,
    password: Optional[str],
    type_: str = "A1",
    original_filename: Optional[str] = None,
    mime_type: Optional[str] = None,
):
    """
    Store a PKCS#12 container and its encrypted password.

    The container is inspected once to capture subject, issuer, serial and
    validity. A container that cannot be opened is still stored; it simply has
    no validity window and is never picked for automatic signing.
    """
    from .models import Certificate
    from .secret_codec import get_codec

    encrypted = get_codec().encrypt(password or "")
    try:
        info = read_info(data, password)
    except ParseError as exc:
        log.warning("Certificate {!r} could not be inspected: {}", name, exc)
        info = None

    ref = content.new_ref("certificates", original_filename, default_ext=".pfx")
    content.put(ref, data)
    certificate = store.save(Certificate(
        user_id=owner_id,
        name=name,
        storage_ref=ref,
        encrypted_password=encrypted,
        type=type_ or "A1",
        subject=info.subject if info else None,
        issuer=info.issuer if info else None,
        serial=info.serial if info else None,
        valid_from=info.valid_from if info else None,
        valid_to=info.valid_to if info else None,
        original_filename=original_filename,
        mime_type=mime_type or "application/x-pkcs12",
    ))
    store.log_activity(
        owner_id, "certificate", "certificate_uploaded", "success" if info else "warning",
        f'Certificate "{name}" uploaded' + ("" if info else " (details unavailable)"),
        ref_id=certificate.id,
    )
    return certificate
