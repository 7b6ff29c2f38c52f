import os


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./docseal.db")

DATA_DIR = os.path.abspath(os.getenv("DATA_DIR", "./data"))
UPLOAD_DIR = os.path.join(DATA_DIR, "uploads")
TEMP_DIR = os.path.join(DATA_DIR, "temp")
STAGING_DIR = os.path.join(DATA_DIR, "staging")
ALLOWED_BASE_DIRS = (UPLOAD_DIR, TEMP_DIR, STAGING_DIR)

CONVERTER_ENGINE = os.getenv("CONVERTER_ENGINE", "local")
LOCAL_CONVERTER_BIN = os.getenv("LOCAL_CONVERTER_BIN", "soffice")
LOCAL_CONVERTER_TIMEOUT = float(os.getenv("LOCAL_CONVERTER_TIMEOUT", "60"))

REMOTE_SERVER_URL = os.getenv("REMOTE_SERVER_URL")
REMOTE_JWT_SECRET = os.getenv("REMOTE_JWT_SECRET")
REMOTE_JWT_ISSUER = os.getenv("REMOTE_JWT_ISSUER", "docseal")
REMOTE_JWT_AUDIENCE = os.getenv("REMOTE_JWT_AUDIENCE", "onlyoffice")
REMOTE_ASYNC = _flag("REMOTE_ASYNC")
REMOTE_TIMEOUT_MS = int(os.getenv("REMOTE_TIMEOUT_MS", "60000"))
REMOTE_POLL_INTERVAL_MS = int(os.getenv("REMOTE_POLL_INTERVAL_MS", "2000"))
REMOTE_MAX_RETRIES = int(os.getenv("REMOTE_MAX_RETRIES", "3"))
REMOTE_RETRY_BASE_MS = int(os.getenv("REMOTE_RETRY_BASE_MS", "1000"))
REMOTE_STAGING = os.getenv("REMOTE_STAGING", "local")
LOCAL_CALLBACK_URL = os.getenv("LOCAL_CALLBACK_URL", "http://localhost:8000")
STAGING_TTL_SECONDS = int(os.getenv("STAGING_TTL_SECONDS", "600"))

CERT_ENCRYPTION_KEY = os.getenv("CERT_ENCRYPTION_KEY")
SECRET_KEY = os.getenv("SECRET_KEY", "devsecret")

BATCH_MAX_WORKERS = int(os.getenv("BATCH_MAX_WORKERS", "4"))
TEMP_MAX_AGE_SECONDS = int(os.getenv("TEMP_MAX_AGE_SECONDS", "3600"))

SIGN_APPEND_SUMMARY = _flag("SIGN_APPEND_SUMMARY", "true")
SIGN_REASON = os.getenv("SIGN_REASON", "Document signed by docseal")
SIGN_LOCATION = os.getenv("SIGN_LOCATION")

MINIO_ENDPOINT = os.getenv("MINIO_ENDPOINT", "minio:9000")
MINIO_ACCESS_KEY = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
MINIO_SECRET_KEY = os.getenv("MINIO_SECRET_KEY", "minioadmin")
MINIO_BUCKET = os.getenv("MINIO_BUCKET", "docseal")
MINIO_SECURE = _flag("MINIO_SECURE")

REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
WORKER_QUEUE = os.getenv("WORKER_QUEUE", "docseal")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE")
