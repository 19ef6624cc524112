import logging
from typing import Optional

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import DatabaseError, models, transaction
from django.forms.models import model_to_dict

from ..exceptions import AuditWriteFailed
from ..models import AuditLog, Company

logger = logging.getLogger(__name__)

# model class -> table name shown in the audit log
TABLE_NAMES = {
    "Account": "accounts",
    "Customer": "customers",
    "Vendor": "vendors",
    "Transaction": "transactions",
    "Invoice": "invoices",
    "Bill": "bills",
    "Payment": "payments",
}


def snapshot(instance, fields=None):
    """Plain-dict state of a model row, enough to reconstruct the change."""
    data = model_to_dict(instance, fields=fields)
    data["id"] = instance.pk
    lines = getattr(instance, "lines", None)
    if fields is None and isinstance(lines, models.Manager):
        data["lines"] = [model_to_dict(line) for line in lines.all()]
    return data


def table_name_for(instance):
    name = type(instance).__name__
    return TABLE_NAMES.get(name, instance._meta.db_table)


def log_action(
    *,
    action: str,
    instance=None,
    user=None,
    company: Optional[Company] = None,
    table_name: Optional[str] = None,
    record_id=None,
    old_values: dict | None = None,
    new_values: dict | None = None,
):
    """
    Central audit recorder. Best-effort: the write runs in its own savepoint,
    so a failure is logged and reported but never undoes the primary change.
    Returns the AuditLog row, or None when recording failed.
    """
    if company is None and instance is not None:
        company = getattr(instance, "company", None)
    if table_name is None:
        table_name = table_name_for(instance)
    if record_id is None:
        record_id = instance.pk

    # anonymous users are not members of anything
    if user is not None and not getattr(user, "is_authenticated", False):
        user = None

    try:
        with transaction.atomic():
            return AuditLog.objects.create(
                company=company,
                user=user,
                action=action,
                table_name=table_name,
                record_id=str(record_id),
                old_values=old_values,
                new_values=new_values,
            )
    except (DatabaseError, ValidationError) as exc:
        failure = AuditWriteFailed(
            f"Could not record {action} on {table_name}({record_id}): {exc}")
        logger.error(
            failure.message,
            exc_info=exc,
            extra={
                "audit_code": failure.code,
                "company_id": getattr(company, "pk", None),
                "table_name": table_name,
                "record_id": str(record_id),
            },
        )
        return None


def recent_audit_logs(company, search=None, limit=None):
    """Newest audit rows first, optionally filtered on table, action or record id."""
    limit = limit or settings.LEDGER_AUDIT_LOG_LIMIT
    qs = AuditLog.objects.for_company(company).select_related("user")
    if search:
        qs = qs.filter(
            models.Q(table_name__icontains=search)
            | models.Q(action__icontains=search)
            | models.Q(record_id__icontains=search)
        )
    return list(qs.order_by("-created_at", "-id")[:limit])
