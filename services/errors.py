# services/errors.py
"""
Typed failures raised by the services and rendered as JSON by app.py.

Every error carries the HTTP status and a short machine code; controllers
never catch these, they bubble up to the app-level error handler.
"""
from __future__ import annotations


class AppError(Exception):
    status = 400
    code = "error"

    def __init__(self, message: str, *, status: int | None = None,
                 code: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> dict:
        out = {"error": self.message, "code": self.code}
        if self.details:
            out["details"] = self.details
        return out


class ValidationError(AppError):
    status = 400
    code = "validation_error"


class NotFound(AppError):
    status = 404
    code = "not_found"


class Forbidden(AppError):
    status = 403
    code = "forbidden"


class Conflict(AppError):
    status = 409
    code = "conflict"


# --- ledger

class LedgerError(AppError):
    pass


class JournalNotFound(NotFound, LedgerError):
    def __init__(self, journal_id):
        super().__init__("Journal not found", details={"journal_id": journal_id})


class UnbalancedJournal(ValidationError, LedgerError):
    code = "unbalanced"

    def __init__(self, debits, credits):
        super().__init__(
            f"Journal is not balanced. Debits: {debits:.2f}, Credits: {credits:.2f}",
            details={"debits": f"{debits:.2f}", "credits": f"{credits:.2f}"})


class PeriodClosed(Conflict, LedgerError):
    code = "period_closed"

    def __init__(self, tx_date):
        super().__init__(
            f"Cannot post to a closed or locked period ({tx_date.isoformat()})",
            details={"transaction_date": tx_date.isoformat()})


class AlreadyPosted(Conflict, LedgerError):
    code = "already_posted"

    def __init__(self):
        super().__init__("Journal is already posted")


class JournalVoided(Conflict, LedgerError):
    code = "journal_voided"

    def __init__(self):
        super().__init__("Cannot post a voided journal")


class JournalLocked(Conflict, LedgerError):
    """Posted and voided journals are immutable."""
    code = "journal_locked"


class SystemAccountProtected(ValidationError, LedgerError):
    code = "system_account"


# --- billing

class BillingError(AppError):
    pass


class PaymentProviderError(BillingError):
    status = 502
    code = "payment_provider_error"
