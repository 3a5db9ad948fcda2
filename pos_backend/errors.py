from __future__ import annotations


class PosError(Exception):
    status_code = 400
    code = 'POS_ERROR'

    def __init__(self, message: str, **context) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def detail(self) -> dict:
        return {'code': self.code, 'message': self.message, **self.context}


class NotFoundError(PosError):
    status_code = 404
    code = 'NOT_FOUND'


class InvalidRequestError(PosError):
    status_code = 400
    code = 'VALIDATION'


class InsufficientStockError(PosError):
    status_code = 409
    code = 'INSUFFICIENT_STOCK'

    def __init__(self, *, sku: str, available: int, requested: int) -> None:
        super().__init__(
            f'Insufficient stock for product {sku}. Available: {available}, Requested: {requested}',
            sku=sku,
            available=available,
            requested=requested,
        )
        self.sku = sku
        self.available = available
        self.requested = requested


class StockConflictError(PosError):
    """Stock changed underneath the transaction; nothing was committed and the call can be retried."""

    status_code = 409
    code = 'CONFLICT'
