class LedgerError(Exception):
    """Base class for every error the ledger engine surfaces to callers.

    `code` is the machine-readable kind, `http_status` what the JSON views
    answer with. The message is the human-readable detail.
    """

    code = "ledger_error"
    http_status = 400

    def __init__(self, message=""):
        super().__init__(message)
        self.message = message

    def as_dict(self):
        return {"code": self.code, "message": self.message}


class InvalidInput(LedgerError):
    """Malformed request: bad line items, missing references, wrong types."""

    code = "invalid_input"


class NotFound(LedgerError):
    """Referenced record does not exist or belongs to another company."""

    code = "not_found"
    http_status = 404


class Conflict(LedgerError):
    """Uniqueness rule violated (e.g. duplicate account code)."""

    code = "conflict"
    http_status = 409


class UnbalancedEntry(LedgerError):
    """Raised when a Transaction fails the double-entry balance check."""

    code = "unbalanced_entry"
    http_status = 422


class OverpaymentRejected(LedgerError):
    """Payment amount exceeds the document's remaining balance."""

    code = "overpayment_rejected"
    http_status = 422


class ConcurrencyConflict(LedgerError):
    """Competing write kept winning; safe to retry from fresh state."""

    code = "concurrency_conflict"
    http_status = 409


class StoreUnavailable(LedgerError):
    """Transient failure of the underlying database."""

    code = "store_unavailable"
    http_status = 503


class AuditWriteFailed(LedgerError):
    """Audit row could not be written. Never rolls back the primary change."""

    code = "audit_write_failed"
    http_status = 500


class ImmutableRecord(LedgerError):
    """Attempt to change or delete a posted ledger record."""

    code = "immutable_record"
    http_status = 409
