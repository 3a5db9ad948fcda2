from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status

from pos_backend.models import UserRole as Role


@dataclass
class Principal:
    id: int
    role: Role
    store_id: int | None
    active: bool = True


def get_current_principal(request: Request) -> Principal:
    principal = getattr(request.state, 'principal', None)
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    if not principal.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
    return principal


def require_role(*allowed: Role):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
        return principal

    return _dep


def resolve_store_id(principal: Principal, requested_store_id: int | None) -> int:
    """SALES principals always act on their own store; other roles must name one."""
    if principal.role == Role.SALES:
        if principal.store_id is None:
            raise HTTPException(status_code=400, detail='Sales login is missing store scope')
        if requested_store_id is not None and requested_store_id != principal.store_id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Store is outside your scope')
        return principal.store_id
    store_id = requested_store_id if requested_store_id is not None else principal.store_id
    if store_id is None:
        raise HTTPException(status_code=400, detail='store_id is required')
    return store_id


def scoped_store_filter(principal: Principal, requested_store_id: int | None) -> int | None:
    if principal.role == Role.SALES:
        return resolve_store_id(principal, requested_store_id)
    return requested_store_id
