import logging

from django.db import IntegrityError, transaction

from ..exceptions import Conflict, InvalidInput, NotFound
from ..models import Account, Company
from ..models.account import NORMAL_BALANCE_BY_TYPE, SYSTEM_ROLES
from .audit_helper import log_action, snapshot
from .validation import get_for_company, to_text

logger = logging.getLogger(__name__)

# Standard chart of accounts copied into every new company:
# (code, name, type, system_role, is_control_account)
DEFAULT_CHART_OF_ACCOUNTS = [
    ("1000", "Cash", "asset", "cash", False),
    ("1010", "Bank Account", "asset", "bank", False),
    ("1200", "Accounts Receivable", "asset", "accounts_receivable", True),
    ("1500", "Equipment", "asset", None, False),
    ("2000", "Accounts Payable", "liability", "accounts_payable", True),
    ("2100", "Tax Payable", "liability", "tax_payable", True),
    ("3000", "Owner's Equity", "equity", "owner_equity", False),
    ("3100", "Retained Earnings", "equity", None, False),
    ("4000", "Sales Revenue", "revenue", None, False),
    ("4100", "Service Revenue", "revenue", None, False),
    ("5000", "Cost of Goods Sold", "cogs", None, False),
    ("6000", "Operating Expenses", "expense", None, False),
    ("6100", "Rent Expense", "expense", None, False),
    ("6200", "Utilities Expense", "expense", None, False),
    ("6300", "Office Supplies", "expense", None, False),
    ("6400", "Marketing Expense", "expense", None, False),
    ("6500", "Travel Expense", "expense", None, False),
    ("6600", "Software Expense", "expense", None, False),
]


def seed_default_accounts(company: Company, user=None):
    """
    Copy the default chart of accounts into `company`.
    Idempotent: a company that already has accounts is left untouched and
    its existing accounts are returned.
    """
    with transaction.atomic():
        # serialize concurrent seeds for the same company
        Company.objects.select_for_update().get(pk=company.pk)

        existing = list(Account.objects.for_company(company).order_by("code"))
        if existing:
            logger.debug("Company %s already has %d accounts, seed skipped",
                         company.slug, len(existing))
            return existing

        created = []
        for code, name, ac_type, role, is_control in DEFAULT_CHART_OF_ACCOUNTS:
            account = Account.objects.create(
                company=company,
                code=code,
                name=name,
                ac_type=ac_type,
                system_role=role,
                is_control_account=is_control,
            )
            log_action(action="insert", instance=account, user=user,
                       new_values=snapshot(account))
            created.append(account)

    logger.info("Seeded %d default accounts for company %s",
                len(created), company.slug)
    return created


def create_account(company, code, name, ac_type, *, description=None,
                   system_role=None, is_control_account=False, user=None):
    """Add one account to the company's chart. Codes are unique per company."""
    code = to_text(code, "code", required=True, max_length=32)
    name = to_text(name, "name", required=True, max_length=200)
    if ac_type not in NORMAL_BALANCE_BY_TYPE:
        raise InvalidInput(
            f"Account type must be one of {sorted(NORMAL_BALANCE_BY_TYPE)}, got {ac_type!r}")
    if system_role is not None and system_role not in dict(SYSTEM_ROLES):
        raise InvalidInput(f"Unknown system role {system_role!r}")

    if Account.objects.for_company(company).filter(code=code).exists():
        raise Conflict(f"Account code {code} already exists")
    if system_role and Account.objects.for_company(company).filter(
            system_role=system_role).exists():
        raise Conflict(f"An account with role {system_role} already exists")

    try:
        with transaction.atomic():
            account = Account.objects.create(
                company=company,
                code=code,
                name=name,
                ac_type=ac_type,
                description=description,
                system_role=system_role,
                is_control_account=is_control_account,
            )
    except IntegrityError:
        # lost a race against another insert with the same code
        raise Conflict(f"Account code {code} already exists")

    log_action(action="insert", instance=account, user=user,
               new_values=snapshot(account))
    return account


def resolve_account(company, account_id):
    """The company's account with this id, NotFound otherwise."""
    return get_for_company(Account, company, account_id, "Account")


def get_system_account(company, role):
    account = Account.objects.for_company(company).filter(
        system_role=role, is_active=True).first()
    if account is None:
        raise NotFound(
            f"No {role.replace('_', ' ')} account configured for company {company.slug}")
    return account


def list_accounts(company, ac_type=None):
    qs = Account.objects.for_company(company)
    if ac_type:
        if ac_type not in NORMAL_BALANCE_BY_TYPE:
            raise InvalidInput(f"Unknown account type {ac_type!r}")
        qs = qs.filter(ac_type=ac_type)
    return list(qs.order_by("code"))
