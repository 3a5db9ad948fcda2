from fastapi import Request

from pos_backend.services.document_renderer import DocumentRenderer
from pos_backend.services.invoice_engine import InvoiceEngine
from pos_backend.services.offline_sync_service import OfflineSyncReconciler
from pos_backend.services.void_engine import VoidEngine


def get_invoice_engine(request: Request) -> InvoiceEngine:
    return request.app.state.invoice_engine


def get_void_engine(request: Request) -> VoidEngine:
    return request.app.state.void_engine


def get_sync_reconciler(request: Request) -> OfflineSyncReconciler:
    return request.app.state.sync_reconciler


def get_document_renderer(request: Request) -> DocumentRenderer | None:
    return request.app.state.document_renderer


def get_session_factory(request: Request):
    return request.app.state.session_factory
