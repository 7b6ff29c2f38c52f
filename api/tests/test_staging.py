import os
from typing import Dict

import pytest

from docseal import objectstore
from docseal.errors import ConfigError, SecurityError
from docseal.staging import LocalStager, MinioStager, build_stager


@pytest.fixture
def mock_bucket(monkeypatch) -> Dict[str, bytes]:
    bucket: Dict[str, bytes] = {}

    def fake_put_bytes(key: str, data: bytes, content_type: str = "application/octet-stream"):
        bucket[key] = bytes(data)

    def fake_presigned_url(key: str, expires_seconds: int) -> str:
        return f"https://minio.local/docseal/{key}?X-Amz-Expires={expires_seconds}"

    def fake_delete_object(key: str):
        bucket.pop(key, None)

    monkeypatch.setattr(objectstore, "put_bytes", fake_put_bytes)
    monkeypatch.setattr(objectstore, "presigned_url", fake_presigned_url)
    monkeypatch.setattr(objectstore, "delete_object", fake_delete_object)
    return bucket


def test_minio_stager_removes_object_after_use(mock_bucket):
    with MinioStager(ttl=120).stage(b"PK data", "contrato final.docx") as url:
        assert len(mock_bucket) == 1
        key = next(iter(mock_bucket))
        assert key.startswith("staging/") and key.endswith("/contrato_final.docx")
        assert url.endswith("X-Amz-Expires=120")
    assert mock_bucket == {}


def test_minio_stager_cleans_up_when_conversion_fails(mock_bucket):
    with pytest.raises(RuntimeError):
        with MinioStager().stage(b"PK", "a.docx"):
            raise RuntimeError("conversion blew up")
    assert mock_bucket == {}


def test_local_stager_round_trip(tmp_path):
    stager = LocalStager(directory=str(tmp_path), callback_url="http://api.local/", ttl=60)
    with stager.stage(b"PK local", "a.docx") as url:
        assert url.startswith("http://api.local/api/staging/")
        token = url.rsplit("/", 1)[1]
        with open(stager.open_path(token), "rb") as fh:
            assert fh.read() == b"PK local"
    assert os.listdir(tmp_path) == []
    with pytest.raises(FileNotFoundError):
        stager.open_path(token)


def test_local_stager_rejects_tampered_token(tmp_path):
    stager = LocalStager(directory=str(tmp_path))
    with stager.stage(b"PK", "a.docx") as url:
        token = url.rsplit("/", 1)[1]
        with pytest.raises(SecurityError):
            stager.open_path(token[:-2] + ("AA" if not token.endswith("AA") else "BB"))


def test_build_stager(monkeypatch):
    assert isinstance(build_stager("local"), LocalStager)
    assert isinstance(build_stager("minio"), MinioStager)
    with pytest.raises(ConfigError):
        build_stager("ftp")
