import functools
import json
import logging

from django.http import JsonResponse
from django.views.decorators.http import require_GET, require_POST

from .exceptions import InvalidInput, LedgerError
from .models import EntityMembership
from .services import operations
from .services.audit_helper import recent_audit_logs
from .services.balances import financial_summary

logger = logging.getLogger(__name__)


def _error(code, message, status):
    return JsonResponse({"ok": False, "error": {"code": code, "message": message}},
                        status=status)


def _json_body(request):
    try:
        payload = json.loads(request.body or b"{}")
    except (ValueError, UnicodeDecodeError):
        raise InvalidInput("Request body must be valid JSON")
    if not isinstance(payload, dict):
        raise InvalidInput("Request body must be a JSON object")
    return payload


def ledger_endpoint(write=False):
    """
    Resolve the tenant set by CurrentCompanyMiddleware, pass it to the view,
    and turn LedgerError into {"ok": false, "error": {...}} with its status.
    """

    def decorator(view):
        @functools.wraps(view)
        def wrapper(request, *args, **kwargs):
            if not request.user.is_authenticated:
                return _error("not_authenticated", "Authentication required", 401)
            company = getattr(request, "company", None)
            if company is None:
                return _error("no_company", "No active company for this user", 403)
            if write:
                membership = EntityMembership.objects.filter(
                    user=request.user, company=company).first()
                if membership is None or not membership.can_post:
                    return _error("forbidden", "Read-only access to this company", 403)
            try:
                return view(request, company, *args, **kwargs)
            except LedgerError as exc:
                log = logger.error if exc.http_status >= 500 else logger.info
                log("%s %s failed: %s", request.method, request.path, exc.message,
                    extra={"error_code": exc.code, "company_id": company.pk})
                return JsonResponse({"ok": False, "error": exc.as_dict()},
                                    status=exc.http_status)

        return wrapper

    return decorator


# ------------------------------------
# Money-moving endpoints
# ------------------------------------
@require_POST
@ledger_endpoint(write=True)
def create_invoice_view(request, company):
    data = _json_body(request)
    invoice_id = operations.create_invoice_with_journal_entries(
        company,
        data.get("customer_id"),
        data.get("invoice_data"),
        data.get("line_items"),
        user=request.user,
    )
    return JsonResponse({"ok": True, "invoice_id": invoice_id}, status=201)


@require_POST
@ledger_endpoint(write=True)
def create_bill_view(request, company):
    data = _json_body(request)
    bill_id = operations.create_bill_with_journal_entries(
        company,
        data.get("vendor_id"),
        data.get("bill_data"),
        data.get("line_items"),
        user=request.user,
    )
    return JsonResponse({"ok": True, "bill_id": bill_id}, status=201)


@require_POST
@ledger_endpoint(write=True)
def create_expense_view(request, company):
    data = _json_body(request)
    transaction_id = operations.create_expense_transaction(
        company,
        data.get("vendor_name"),
        data.get("transaction_date"),
        data.get("transaction_description"),
        data.get("payment_account_id"),
        data.get("items"),
        user=request.user,
    )
    return JsonResponse({"ok": True, "transaction_id": transaction_id}, status=201)


@require_POST
@ledger_endpoint(write=True)
def process_payment_view(request, company):
    data = _json_body(request)
    # accept both {"payment_data": {...}} and the bare payment object
    payment_data = data.get("payment_data", data)
    payment_id = operations.process_payment_with_journal_entries(
        company, payment_data, user=request.user)
    return JsonResponse({"ok": True, "payment_id": payment_id}, status=201)


@require_POST
@ledger_endpoint(write=True)
def seed_accounts_view(request, company):
    accounts = operations.copy_default_accounts_for_user(company, user=request.user)
    return JsonResponse({"ok": True, "account_count": len(accounts)})


# ------------------------------------
# Read endpoints
# ------------------------------------
@require_GET
@ledger_endpoint()
def account_balances_view(request, company):
    rows = operations.get_account_balances(
        company, request.GET.get("account_type") or None)
    return JsonResponse({"ok": True, "balances": rows})


@require_GET
@ledger_endpoint()
def financial_summary_view(request, company):
    return JsonResponse({"ok": True, "summary": financial_summary(company)})


@require_GET
@ledger_endpoint()
def audit_logs_view(request, company):
    rows = recent_audit_logs(company, search=request.GET.get("q") or None)
    return JsonResponse({
        "ok": True,
        "audit_logs": [
            {
                "id": row.pk,
                "user": row.user.get_username() if row.user else None,
                "action": row.action,
                "table_name": row.table_name,
                "record_id": row.record_id,
                "old_values": row.old_values,
                "new_values": row.new_values,
                "created_at": row.created_at,
            }
            for row in rows
        ],
    })
