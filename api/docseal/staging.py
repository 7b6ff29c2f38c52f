"""
Short-lived, publicly fetchable copies of populated documents.

The remote conversion service downloads its input from the URL returned by
``Stager.stage``; the copy is removed when the context exits.
"""

import os
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, Optional

from itsdangerous import BadSignature, SignatureExpired

from . import config, objectstore, pathguard
from .errors import ConfigError, SecurityError
from .logger import get_logger
from .utils import make_token, read_token, safe_filename

log = get_logger(__name__)

STAGING_SALT = "staging"


class Stager(ABC):
    @abstractmethod
    def stage(self, data: bytes, filename: str):
        """Context manager yielding the public URL of a temporary copy."""


class LocalStager(Stager):
    """Files under the staging dir, served by ``GET /api/staging/{token}``."""

    def __init__(self, directory: Optional[str] = None, callback_url: Optional[str] = None, ttl: Optional[int] = None):
        self.directory = directory or config.STAGING_DIR
        self.callback_url = (callback_url or config.LOCAL_CALLBACK_URL).rstrip("/")
        self.ttl = ttl or config.STAGING_TTL_SECONDS

    @contextmanager
    def stage(self, data: bytes, filename: str) -> Iterator[str]:
        ext = os.path.splitext(filename)[1].lower()
        name = f"{uuid.uuid4().hex}{ext}"
        pathguard.write_bytes(name, data, self.directory)
        token = make_token({"name": name}, salt=STAGING_SALT)
        try:
            yield f"{self.callback_url}/api/staging/{token}"
        finally:
            pathguard.remove(name, self.directory)

    def open_path(self, token: str) -> str:
        """Resolve a staging token to the file path; raises SecurityError or FileNotFoundError."""
        try:
            payload = read_token(token, max_age=self.ttl, salt=STAGING_SALT)
        except SignatureExpired as exc:
            raise FileNotFoundError("staged file expired") from exc
        except BadSignature as exc:
            log.error("SECURITY: invalid staging token presented")
            raise SecurityError("invalid staging token") from exc
        path = pathguard.resolve(str(payload.get("name", "")), self.directory)
        if not os.path.isfile(path):
            raise FileNotFoundError("staged file not found")
        return path


class MinioStager(Stager):
    """Objects under ``staging/`` in the bucket, fetched through presigned URLs."""

    def __init__(self, ttl: Optional[int] = None):
        self.ttl = ttl or config.STAGING_TTL_SECONDS

    @contextmanager
    def stage(self, data: bytes, filename: str) -> Iterator[str]:
        key = f"staging/{uuid.uuid4().hex}/{safe_filename(filename)}"
        objectstore.put_bytes(key, data)
        try:
            yield objectstore.presigned_url(key, self.ttl)
        finally:
            try:
                objectstore.delete_object(key)
            except Exception as exc:
                log.warning("Could not remove staged object {}: {}", key, exc)


def build_stager(kind: Optional[str] = None) -> Stager:
    kind = (kind or config.REMOTE_STAGING).lower()
    if kind == "local":
        return LocalStager()
    if kind == "minio":
        return MinioStager()
    raise ConfigError(f"unknown REMOTE_STAGING value: {kind}")
