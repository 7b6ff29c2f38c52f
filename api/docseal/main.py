from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import config
from .conversion import build_engine
from .db import init_db
from .janitor import sweep
from .logger import get_logger, setup_logger
from .pathguard import ensure_directories
from .routers import activity, batches, certificates, documents, staging, templates

setup_logger(config.LOG_LEVEL, config.LOG_FILE)
log = get_logger(__name__)

app = FastAPI(title="docseal API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
def on_startup():
    init_db()
    ensure_directories()
    sweep()
    app.state.engine = build_engine()
    log.info("docseal API started (converter={})", config.CONVERTER_ENGINE)

app.include_router(templates.router, prefix="/api/templates", tags=["templates"])
app.include_router(certificates.router, prefix="/api/certificates", tags=["certificates"])
app.include_router(documents.router, prefix="/api/documents", tags=["documents"])
app.include_router(batches.router, prefix="/api/batches", tags=["batches"])
app.include_router(staging.router, prefix="/api/staging", tags=["staging"])
app.include_router(activity.router, prefix="/api/activity", tags=["activity"])

@app.get("/")
def root():
    return {"ok": True, "service": "docseal-api"}
