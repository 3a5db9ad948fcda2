import logging

from fastapi import FastAPI

from pos_backend.config import settings
from pos_backend.db import SessionLocal
from pos_backend.routers import inventory, pos
from pos_backend.security.principal import install_principal_middleware
from pos_backend.services.invoice_engine import InvoiceEngine
from pos_backend.services.offline_sync_service import OfflineSyncReconciler
from pos_backend.services.provider_factory import get_document_renderer, get_event_notifier
from pos_backend.services.void_engine import VoidEngine

logging.basicConfig(
    level=settings.log_level.upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)


def create_app(session_factory=SessionLocal, *, notifier=None, renderer=None) -> FastAPI:
    app = FastAPI(title='POS Backend')

    notifier = notifier if notifier is not None else get_event_notifier()
    renderer = renderer if renderer is not None else get_document_renderer()
    invoice_engine = InvoiceEngine(session_factory, notifier=notifier, renderer=renderer)

    app.state.session_factory = session_factory
    app.state.document_renderer = renderer
    app.state.invoice_engine = invoice_engine
    app.state.void_engine = VoidEngine(session_factory, notifier=notifier)
    app.state.sync_reconciler = OfflineSyncReconciler(
        session_factory,
        engine=invoice_engine,
        max_batch_size=settings.sync_max_batch_size,
    )

    install_principal_middleware(app)

    app.include_router(pos.router)
    app.include_router(inventory.router)

    @app.get('/health')
    def health() -> dict:
        return {'status': 'ok'}

    return app


app = create_app()
