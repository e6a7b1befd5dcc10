from __future__ import annotations

from typing import Any, Sequence


class ShopError(Exception):
    pass


class ValidationError(ShopError):
    pass


class NotFoundError(ShopError):
    pass


class ConflictError(ShopError):
    def __init__(self, message: str, conflicts: Sequence[Any] = ()) -> None:
        super().__init__(message)
        self.conflicts = list(conflicts)


class IllegalTransitionError(ShopError):
    def __init__(self, entity: str, current: str, attempted: str, reason: str | None = None) -> None:
        msg = f"{entity} cannot move from '{current}' to '{attempted}'"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)
        self.entity = entity
        self.current = current
        self.attempted = attempted


class FinancialInvariantError(ShopError):
    pass


class DuplicateInvoiceError(ShopError):
    def __init__(self, work_order_id: int, invoice_number: str | None = None) -> None:
        msg = f"Invoice already exists for work order {work_order_id}"
        if invoice_number:
            msg = f"{msg} ({invoice_number})"
        super().__init__(msg)
        self.work_order_id = work_order_id
        self.invoice_number = invoice_number
