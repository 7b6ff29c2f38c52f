"""
PAdES signing of generated PDFs with a stored PKCS#12 certificate.

The container password is only ever held encrypted; it is decrypted here,
right before the container is unlocked.
"""

import uuid
from datetime import datetime, timezone
from io import BytesIO
from typing import Optional

from asn1crypto import keys as asn1_keys
from asn1crypto import x509 as asn1_x509
from cryptography.hazmat.primitives import serialization
from pyhanko.pdf_utils.incremental_writer import IncrementalPdfFileWriter
from pyhanko.sign import signers
from pyhanko.sign.fields import SigFieldSpec, SigSeedSubFilter
from pyhanko_certvalidator.registry import SimpleCertificateStore

from . import config
from .certificates import load_container, format_name
from .errors import ConfigError, DecryptError, ParseError, SigningError
from .logger import get_logger
from .secret_codec import SecretCodec, get_codec
from .summary_page import append_summary
from .utils import sha256_bytes

log = get_logger(__name__)

PROVIDER = "pyhanko/PAdES"


def _to_asn1_cert(cert) -> asn1_x509.Certificate:
    return asn1_x509.Certificate.load(cert.public_bytes(serialization.Encoding.DER))


class SigningEngine:
    def __init__(
        self,
        codec: Optional[SecretCodec] = None,
        append_summary_page: Optional[bool] = None,
        reason: Optional[str] = None,
        location: Optional[str] = None,
    ):
        self._codec = codec
        self.append_summary_page = config.SIGN_APPEND_SUMMARY if append_summary_page is None else append_summary_page
        self.reason = reason or config.SIGN_REASON
        self.location = location or config.SIGN_LOCATION

    @property
    def codec(self) -> SecretCodec:
        return self._codec or get_codec()

    def _unlock(self, container: bytes, encrypted_secret: str):
        try:
            password = self.codec.decrypt(encrypted_secret or "")
        except (DecryptError, ConfigError) as exc:
            raise SigningError("secret", str(exc)) from exc
        try:
            key, cert, extra = load_container(container, password)
        except ParseError as exc:
            raise SigningError("unlock", str(exc)) from exc
        if key is None:
            raise SigningError("unlock", "certificate container holds no private key")
        return key, cert, extra

    def _signer(self, key, cert, extra) -> signers.SimpleSigner:
        signing_cert = _to_asn1_cert(cert)
        signing_key = asn1_keys.PrivateKeyInfo.load(
            key.private_bytes(
                serialization.Encoding.DER,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            )
        )
        registry = SimpleCertificateStore.from_certs([signing_cert] + [_to_asn1_cert(c) for c in extra])
        return signers.SimpleSigner(signing_cert=signing_cert, signing_key=signing_key, cert_registry=registry)

    def sign(self, artifact: bytes, container: bytes, encrypted_secret: str, signed_at: Optional[datetime] = None) -> bytes:
        """Return ``artifact`` with an embedded PAdES signature; raises SigningError."""
        key, cert, extra = self._unlock(container, encrypted_secret)
        signed_at = signed_at or datetime.now(timezone.utc)

        try:
            signer = self._signer(key, cert, extra)
            payload = artifact
            if self.append_summary_page:
                payload = append_summary(artifact, {
                    "Signer": format_name(cert.subject),
                    "Issuer": format_name(cert.issuer),
                    "Serial": format(cert.serial_number, "x"),
                    "Signed at": signed_at.strftime("%Y-%m-%d %H:%M:%S %Z"),
                    "SHA-256 (unsigned)": sha256_bytes(artifact),
                })
            field_name = f"Signature_{uuid.uuid4().hex[:8]}"
            writer = IncrementalPdfFileWriter(BytesIO(payload), strict=False)
            out = signers.sign_pdf(
                writer,
                signature_meta=signers.PdfSignatureMetadata(
                    field_name=field_name,
                    reason=self.reason,
                    location=self.location,
                    subfilter=SigSeedSubFilter.PADES,
                ),
                signer=signer,
                new_field_spec=SigFieldSpec(sig_field_name=field_name),
            )
        except Exception as exc:
            raise SigningError("signature", str(exc)) from exc

        log.info("Signed artifact with certificate serial {}", format(cert.serial_number, "x"))
        return out.getvalue()
