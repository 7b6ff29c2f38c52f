import hashlib, json, re
from itsdangerous import URLSafeTimedSerializer
from .config import SECRET_KEY

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def sha256_bytes(b: bytes) -> str:
    return hashlib.sha256(b).hexdigest()


def canonical_json(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def safe_filename(name: str, fallback: str = "document") -> str:
    cleaned = _UNSAFE_CHARS.sub("_", name or "").strip("._")
    return cleaned or fallback


def make_token(payload: dict, salt: str = "staging") -> str:
    s = URLSafeTimedSerializer(SECRET_KEY, salt=salt)
    return s.dumps(payload)


def read_token(token: str, max_age: int, salt: str = "staging") -> dict:
    s = URLSafeTimedSerializer(SECRET_KEY, salt=salt)
    return s.loads(token, max_age=max_age)
