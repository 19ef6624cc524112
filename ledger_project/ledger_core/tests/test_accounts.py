import pytest
from django.test import TestCase

from ledger_core.exceptions import Conflict, ImmutableRecord, InvalidInput, NotFound
from ledger_core.models import Account, AuditLog, Company
from ledger_core.services import (create_account, get_system_account,
                                  list_accounts, seed_default_accounts)
from ledger_core.services.accounts import DEFAULT_CHART_OF_ACCOUNTS
from ledger_core.services.posting import post_transaction

from .factories import TODAY, make_tenant


class SeedDefaultAccountsTests(TestCase):
    def setUp(self):
        self.company = Company.objects.create(name="Fresh Co", slug="fresh-co")

    def test_seed_creates_default_chart(self):
        accounts = seed_default_accounts(self.company)

        self.assertEqual(len(accounts), len(DEFAULT_CHART_OF_ACCOUNTS))
        codes = list(Account.objects.for_company(self.company)
                     .order_by("code").values_list("code", flat=True))
        self.assertEqual(codes, sorted(row[0] for row in DEFAULT_CHART_OF_ACCOUNTS))

    def test_seed_is_idempotent(self):
        first = seed_default_accounts(self.company)
        second = seed_default_accounts(self.company)

        self.assertEqual(
            sorted(a.pk for a in first), sorted(a.pk for a in second))
        self.assertEqual(
            Account.objects.for_company(self.company).count(),
            len(DEFAULT_CHART_OF_ACCOUNTS))

    def test_normal_balance_follows_type(self):
        seed_default_accounts(self.company)
        for account in Account.objects.for_company(self.company):
            expected = "debit" if account.ac_type in ("asset", "cogs", "expense") else "credit"
            self.assertEqual(account.normal_balance, expected, account.code)

    def test_system_roles_resolve(self):
        seed_default_accounts(self.company)
        self.assertEqual(get_system_account(self.company, "accounts_receivable").code, "1200")
        self.assertEqual(get_system_account(self.company, "accounts_payable").code, "2000")
        self.assertEqual(get_system_account(self.company, "tax_payable").code, "2100")

    def test_missing_system_account_is_not_found(self):
        with self.assertRaises(NotFound):
            get_system_account(self.company, "accounts_receivable")

    def test_seed_writes_audit_rows(self):
        seed_default_accounts(self.company)
        self.assertEqual(
            AuditLog.objects.for_company(self.company).filter(
                table_name="accounts", action="insert").count(),
            len(DEFAULT_CHART_OF_ACCOUNTS))


class CreateAccountTests(TestCase):
    def setUp(self):
        self.t = make_tenant()

    def test_create_account(self):
        account = create_account(self.t.company, "6700", "Insurance", "expense")
        self.assertEqual(account.normal_balance, "debit")
        self.assertIn(account, list_accounts(self.t.company, "expense"))

    def test_duplicate_code_conflicts(self):
        with self.assertRaises(Conflict):
            create_account(self.t.company, "1000", "Petty Cash", "asset")

    def test_duplicate_system_role_conflicts(self):
        with self.assertRaises(Conflict):
            create_account(self.t.company, "1020", "Second Bank", "asset",
                           system_role="bank")

    def test_unknown_type_rejected(self):
        with self.assertRaises(InvalidInput):
            create_account(self.t.company, "9000", "Mystery", "income")

    def test_same_code_allowed_in_another_company(self):
        other = make_tenant("other-co")
        self.assertEqual(other.cash.code, self.t.cash.code)
        self.assertNotEqual(other.cash.pk, self.t.cash.pk)

    def test_list_accounts_filters_by_type(self):
        revenue = list_accounts(self.t.company, "revenue")
        self.assertEqual([a.code for a in revenue], ["4000", "4100"])
        with self.assertRaises(InvalidInput):
            list_accounts(self.t.company, "income")

    def test_account_with_entries_cannot_be_deleted(self):
        post_transaction(
            self.t.company, TODAY, "Owner investment",
            [{"account": self.t.cash, "debit": "10.00"},
             {"account": self.t.equity, "credit": "10.00"}],
        )
        with self.assertRaises(ImmutableRecord):
            self.t.cash.delete()

    def test_unused_account_can_be_deleted(self):
        account = create_account(self.t.company, "6800", "Temp", "expense")
        account.delete()
        self.assertFalse(Account.objects.filter(pk=account.pk).exists())


@pytest.mark.django_db
def test_seed_for_two_companies_is_isolated():
    a = Company.objects.create(name="A", slug="a")
    b = Company.objects.create(name="B", slug="b")
    seed_default_accounts(a)
    seed_default_accounts(b)

    assert Account.objects.for_company(a).count() == len(DEFAULT_CHART_OF_ACCOUNTS)
    assert Account.objects.for_company(b).count() == len(DEFAULT_CHART_OF_ACCOUNTS)
    assert not set(Account.objects.for_company(a).values_list("pk", flat=True)) & set(
        Account.objects.for_company(b).values_list("pk", flat=True))
