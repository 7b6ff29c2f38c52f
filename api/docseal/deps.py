"""Request-scoped wiring of the pipeline components."""

from fastapi import Depends, Request
from sqlmodel import Session

from .conversion import build_engine
from .db import get_session
from .orchestrator import BatchOrchestrator
from .signing import SigningEngine
from .staging import LocalStager
from .storage import ContentStore
from .store import RecordStore
from .templating import TemplateRenderer


def _component(request: Request, name: str, factory):
    # Engines are built once per app and shared by every request.
    state = request.app.state
    value = getattr(state, name, None)
    if value is None:
        value = factory()
        setattr(state, name, value)
    return value


def get_store(session: Session = Depends(get_session)) -> RecordStore:
    return RecordStore(session)


def get_content(request: Request) -> ContentStore:
    return _component(request, "content", ContentStore)


def get_stager(request: Request) -> LocalStager:
    return _component(request, "stager", LocalStager)


def get_orchestrator(
    request: Request,
    store: RecordStore = Depends(get_store),
) -> BatchOrchestrator:
    return BatchOrchestrator(
        store=store,
        content=get_content(request),
        renderer=_component(request, "renderer", TemplateRenderer),
        engine=_component(request, "engine", build_engine),
        signer=_component(request, "signer", SigningEngine),
    )
