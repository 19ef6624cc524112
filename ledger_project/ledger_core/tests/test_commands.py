from decimal import Decimal
from io import StringIO

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase

from ledger_core.models import Account, Company, Invoice, Payment

from .factories import make_tenant


class SeedDefaultAccountsCommandTests(TestCase):
    def test_seeds_company_by_slug(self):
        t = make_tenant()
        out = StringIO()
        call_command("seed_default_accounts", "--company", t.company.slug, stdout=out)
        self.assertIn("18 accounts", out.getvalue())
        self.assertEqual(Account.objects.for_company(t.company).count(), 18)

    def test_unknown_company(self):
        with self.assertRaises(CommandError):
            call_command("seed_default_accounts", "--company", "nope", stdout=StringIO())


class CreateDemoTenantCommandTests(TestCase):
    def test_builds_a_working_tenant(self):
        out = StringIO()
        call_command("create_demo_tenant", company_name="Demo Co", username="demo",
                     password="pw", stdout=out)

        company = Company.objects.get(slug="demo-co")
        self.assertEqual(Account.objects.for_company(company).count(), 18)
        invoice = Invoice.objects.for_company(company).get()
        self.assertEqual(invoice.subtotal, Decimal("1000.00"))
        self.assertEqual(invoice.status, "partial")
        self.assertEqual(Payment.objects.for_company(company).get().amount,
                         Decimal("500.00"))
        self.assertIn("Demo tenant setup complete!", out.getvalue())

    def test_second_run_gets_a_fresh_slug(self):
        for _ in range(2):
            call_command("create_demo_tenant", company_name="Demo Co",
                         username="demo", stdout=StringIO())
        self.assertEqual(
            sorted(Company.objects.values_list("slug", flat=True)),
            ["demo-co", "demo-co-1"])
