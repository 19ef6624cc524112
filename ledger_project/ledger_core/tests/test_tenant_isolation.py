import json

import pytest
from django.contrib.sessions.backends.db import SessionStore
from django.test import RequestFactory, TestCase

from ledger_core.exceptions import NotFound
from ledger_core.middleware import CurrentCompanyMiddleware
from ledger_core.models import EntityMembership, Invoice
from ledger_core.services import create_invoice, record_payment
from ledger_core.views import account_balances_view

from .factories import TODAY, invoice_line, make_tenant


class TenantIsolationManagerTests(TestCase):
    def setUp(self):
        self.a = make_tenant("company-a")
        self.b = make_tenant("company-b")

        # create one invoice per company
        self.inv_a = create_invoice(self.a.company, self.a.customer, TODAY,
                                    [invoice_line(self.a.sales, "200.00")])
        self.inv_b = create_invoice(self.b.company, self.b.customer, TODAY,
                                    [invoice_line(self.b.sales, "100.00")])

    def test_for_company_returns_only_that_company_objects(self):
        """Compare invoice primary keys"""
        self.assertListEqual(
            list(
                Invoice.objects.for_company(self.a.company)
                .order_by("id")
                .values_list("pk", flat=True)
            ),
            [self.inv_a.pk],  # expected result
        )
        self.assertListEqual(
            list(
                Invoice.objects.for_company(self.b.company)
                .order_by("id")
                .values_list("pk", flat=True)
            ),
            [self.inv_b.pk],
        )

    def test_get_other_company_object_raises_does_not_exist(self):
        # `for_company` shouldn't return the other company's record
        with self.assertRaises(Invoice.DoesNotExist):
            Invoice.objects.for_company(self.a.company).get(pk=self.inv_b.pk)

    def test_paying_other_company_invoice_is_not_found(self):
        with self.assertRaises(NotFound):
            record_payment(self.a.company, "customer_payment", self.inv_b.pk,
                           "10.00", TODAY, self.a.bank)
        self.inv_b.refresh_from_db()
        self.assertEqual(self.inv_b.status, "open")

    def test_each_company_numbers_its_own_invoices(self):
        self.assertEqual(self.inv_a.invoice_number, "INV-00001")
        self.assertEqual(self.inv_b.invoice_number, "INV-00001")


class CurrentCompanyMiddlewareTests(TestCase):
    def setUp(self):
        self.a = make_tenant("company-a")
        self.b = make_tenant("company-b")
        self.factory = RequestFactory()

    def run_middleware(self, user, active_company_id=None):
        request = self.factory.get("/ledger/balances/")
        request.user = user
        request.session = SessionStore()
        if active_company_id is not None:
            request.session["active_company_id"] = active_company_id
        CurrentCompanyMiddleware(lambda r: None).process_request(request)
        return request.company

    def test_defaults_to_users_membership(self):
        self.assertEqual(self.run_middleware(self.a.user), self.a.company)

    def test_session_can_switch_between_member_companies(self):
        EntityMembership.objects.create(user=self.a.user, company=self.b.company,
                                        role="viewer")
        self.assertEqual(
            self.run_middleware(self.a.user, self.b.company.pk), self.b.company)

    def test_tampered_session_resolves_to_no_company(self):
        self.assertIsNone(self.run_middleware(self.a.user, self.b.company.pk))

    def test_inactive_membership_is_ignored(self):
        EntityMembership.objects.filter(user=self.a.user).update(is_active=False)
        self.assertIsNone(self.run_middleware(self.a.user))


@pytest.mark.django_db
def test_balances_view_returns_only_tenant_data():
    a = make_tenant("company-a")
    b = make_tenant("company-b")
    create_invoice(b.company, b.customer, TODAY, [invoice_line(b.sales, "100.00")])

    # Bypass client & call view with a RequestFactory
    request = RequestFactory().get("/ledger/balances/")
    request.user = a.user
    # attach company to request before hitting view
    request.company = a.company  # manually simulate middleware

    response = account_balances_view(request)
    assert response.status_code == 200

    payload = json.loads(response.content)
    account_ids = {row["account_id"] for row in payload["balances"]}
    assert account_ids == set(a.company.account_set.values_list("pk", flat=True))
    assert all(row["balance"] == "0.00" for row in payload["balances"])
