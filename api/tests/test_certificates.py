from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from docseal.certificates import load_container, read_info, register_certificate, select_active
from docseal.errors import ParseError
from docseal.secret_codec import get_codec
from docseal.storage import ContentStore
from docseal.store import RecordStore

from conftest import make_pkcs12

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def cert(name, valid_from, valid_to):
    return SimpleNamespace(name=name, valid_from=valid_from, valid_to=valid_to)


def test_select_active_prefers_soonest_expiry_and_skips_expired():
    candidates = [
        cert("expired", NOW - timedelta(days=400), NOW - timedelta(days=1)),
        cert("long", NOW - timedelta(days=10), NOW + timedelta(days=300)),
        cert("short", NOW - timedelta(days=10), NOW + timedelta(days=20)),
        cert("future", NOW + timedelta(days=1), NOW + timedelta(days=5)),
    ]
    assert select_active(candidates, NOW).name == "short"


def test_select_active_ignores_unparseable_windows():
    candidates = [
        cert("missing", None, None),
        cert("garbage", "not-a-date", "2030-01-01"),
        cert("iso", "2025-01-01T00:00:00Z", "2025-12-31T00:00:00Z"),
    ]
    assert select_active(candidates, NOW).name == "iso"


def test_select_active_none_when_nothing_valid():
    assert select_active([cert("old", NOW - timedelta(days=9), NOW - timedelta(days=2))], NOW) is None
    assert select_active([], NOW) is None


def test_naive_datetimes_are_treated_as_utc():
    naive = cert("naive", datetime(2025, 1, 1), datetime(2025, 7, 1))
    assert select_active([naive], NOW) is naive


def test_read_info_from_container():
    info = read_info(make_pkcs12("pw", common_name="Maria Silva"), "pw")
    assert "CN=Maria Silva" in info.subject
    assert info.subject == info.issuer
    assert info.valid_from < datetime.now(timezone.utc) < info.valid_to


def test_wrong_password_raises_parse_error():
    with pytest.raises(ParseError):
        load_container(make_pkcs12("right"), "wrong")
    with pytest.raises(ParseError):
        load_container(b"not a pkcs12 container", "x")


def test_register_certificate_encrypts_password(session, owner, tmp_path, p12_bytes):
    store = RecordStore(session)
    content = ContentStore(str(tmp_path))
    record = register_certificate(store, content, owner.id, "Assinatura", p12_bytes, "secret", original_filename="a.pfx")
    assert record.encrypted_password != "secret"
    assert get_codec().decrypt(record.encrypted_password) == "secret"
    assert record.valid_to is not None and record.subject
    assert content.get(record.storage_ref) == p12_bytes
    assert store.list_activity(owner.id)[0].action == "certificate_uploaded"


def test_register_unreadable_certificate_keeps_record_without_window(session, owner, tmp_path):
    store = RecordStore(session)
    record = register_certificate(store, ContentStore(str(tmp_path)), owner.id, "Broken", b"junk", "pw")
    assert record.valid_from is None and record.valid_to is None
    assert select_active([record]) is None
    assert store.list_activity(owner.id)[0].status == "warning"
