from __future__ import annotations

import logging

from fastapi import FastAPI, Request

from pos_backend.auth import Principal, Role
from pos_backend.config import settings

logger = logging.getLogger(__name__)

PRINCIPAL_ID_HEADER = 'x-principal-id'
PRINCIPAL_ROLE_HEADER = 'x-principal-role'
PRINCIPAL_STORE_HEADER = 'x-principal-store-id'


def principal_from_headers(headers) -> Principal | None:
    raw_id = (headers.get(PRINCIPAL_ID_HEADER) or '').strip()
    raw_role = (headers.get(PRINCIPAL_ROLE_HEADER) or '').strip().upper()
    raw_store = (headers.get(PRINCIPAL_STORE_HEADER) or '').strip()
    if not raw_id or not raw_role:
        return None
    try:
        principal_id = int(raw_id)
        role = Role(raw_role)
        store_id = int(raw_store) if raw_store else None
    except ValueError:
        logger.warning('Ignoring malformed principal headers (id=%r role=%r store=%r)', raw_id, raw_role, raw_store)
        return None
    return Principal(id=principal_id, role=role, store_id=store_id, active=True)


def install_principal_middleware(app: FastAPI) -> None:
    @app.middleware('http')
    async def principal_middleware(request: Request, call_next):
        principal = None
        if settings.trust_principal_headers:
            principal = principal_from_headers(request.headers)
        request.state.principal = principal
        return await call_next(request)
