import io
from datetime import timedelta
from typing import Optional

from minio import Minio

from .config import MINIO_ENDPOINT, MINIO_ACCESS_KEY, MINIO_SECRET_KEY, MINIO_BUCKET, MINIO_SECURE

_client: Optional[Minio] = None


def get_client() -> Minio:
    global _client
    if _client is None:
        _client = Minio(
            MINIO_ENDPOINT,
            access_key=MINIO_ACCESS_KEY,
            secret_key=MINIO_SECRET_KEY,
            secure=MINIO_SECURE,
        )
    return _client


def ensure_bucket():
    client = get_client()
    if not client.bucket_exists(MINIO_BUCKET):
        client.make_bucket(MINIO_BUCKET)


def put_bytes(key: str, data: bytes, content_type: str = "application/octet-stream"):
    ensure_bucket()
    get_client().put_object(MINIO_BUCKET, key, io.BytesIO(data), length=len(data), content_type=content_type)


def presigned_url(key: str, expires_seconds: int) -> str:
    return get_client().presigned_get_object(MINIO_BUCKET, key, expires=timedelta(seconds=expires_seconds))


def delete_object(key: str):
    get_client().remove_object(MINIO_BUCKET, key)
