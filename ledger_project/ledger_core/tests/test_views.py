import json
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from django.test import TestCase
from django.urls import reverse

from ledger_core.models import EntityMembership, Invoice, Payment
from ledger_core.services import create_invoice

from .factories import TODAY, invoice_line, make_tenant

User = get_user_model()


class LedgerViewTests(TestCase):
    def setUp(self):
        self.t = make_tenant()
        self.client.force_login(self.t.user)

    def post_json(self, name, payload):
        return self.client.post(reverse(f"ledger_core:{name}"),
                                data=json.dumps(payload),
                                content_type="application/json")

    def invoice_payload(self, **overrides):
        payload = {
            "customer_id": self.t.customer.pk,
            "invoice_data": {"date": "2025-09-18", "due_date": "2025-10-18"},
            "line_items": [
                {"description": "Widget", "quantity": "2", "unit_price": "50.00",
                 "revenue_account_id": self.t.sales.pk},
            ],
        }
        payload.update(overrides)
        return payload

    def test_create_invoice(self):
        response = self.post_json("create-invoice", self.invoice_payload())
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertTrue(body["ok"])

        invoice = Invoice.objects.for_company(self.t.company).get(pk=body["invoice_id"])
        self.assertEqual(invoice.total_amount, Decimal("110.00"))
        self.assertEqual(invoice.status, "open")
        self.assertEqual(invoice.created_by, self.t.user)

    def test_invalid_line_maps_to_400(self):
        payload = self.invoice_payload(line_items=[
            {"quantity": 1, "unit_price": "-5.00",
             "revenue_account_id": self.t.sales.pk}])
        response = self.post_json("create-invoice", payload)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "invalid_input")
        self.assertFalse(Invoice.objects.exists())

    def test_malformed_json_is_invalid_input(self):
        response = self.client.post(reverse("ledger_core:create-invoice"),
                                    data="{not json", content_type="application/json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "invalid_input")

    def test_oversized_price_is_invalid_input(self):
        payload = self.invoice_payload(line_items=[
            {"quantity": 1, "unit_price": "1e17",
             "revenue_account_id": self.t.sales.pk}])
        response = self.post_json("create-invoice", payload)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "invalid_input")
        self.assertFalse(Invoice.objects.exists())

    def test_post_flag_must_be_boolean(self):
        payload = self.invoice_payload(
            invoice_data={"date": "2025-09-18", "post": "false"})
        response = self.post_json("create-invoice", payload)
        self.assertEqual(response.status_code, 400)
        self.assertIn("post", response.json()["error"]["message"])
        self.assertFalse(Invoice.objects.exists())

        payload["invoice_data"]["post"] = False
        response = self.post_json("create-invoice", payload)
        self.assertEqual(response.status_code, 201)
        invoice = Invoice.objects.get(pk=response.json()["invoice_id"])
        self.assertEqual(invoice.status, "draft")

    def test_unknown_payment_type_is_named_in_error(self):
        response = self.post_json("process-payment", {
            "payment_type": "refund", "amount": "10.00",
            "payment_account_id": self.t.bank.pk, "date": "2025-09-18"})
        self.assertEqual(response.status_code, 400)
        self.assertIn("payment_type must be one of",
                      response.json()["error"]["message"])

    def test_unknown_customer_maps_to_404(self):
        response = self.post_json("create-invoice",
                                  self.invoice_payload(customer_id=999999))
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "not_found")

    def test_payment_and_overpayment(self):
        invoice = create_invoice(self.t.company, self.t.customer, TODAY,
                                 [invoice_line(self.t.sales, "100.00")])
        payment_data = {
            "payment_type": "customer_payment",
            "invoice_id": invoice.pk,
            "amount": "60.00",
            "payment_method": "credit_card",
            "payment_account_id": self.t.bank.pk,
            "date": "2025-09-19",
        }
        response = self.post_json("process-payment", {"payment_data": payment_data})
        self.assertEqual(response.status_code, 201)
        self.assertTrue(Payment.objects.filter(pk=response.json()["payment_id"]).exists())

        # bare object works too; only 50.00 remains
        response = self.post_json("process-payment", payment_data)
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "overpayment_rejected")
        self.assertEqual(Payment.objects.count(), 1)

    def test_create_bill_and_expense(self):
        response = self.post_json("create-bill", {
            "vendor_id": self.t.vendor.pk,
            "bill_data": {"bill_date": "2025-09-18", "bill_number": "B-1"},
            "line_items": [{"quantity": 1, "unit_price": "300.00",
                            "expense_account_id": self.t.rent.pk}],
        })
        self.assertEqual(response.status_code, 201)
        self.assertIn("bill_id", response.json())

        response = self.post_json("create-expense", {
            "vendor_name": "Corner Shop",
            "transaction_date": "2025-09-18",
            "transaction_description": "Coffee",
            "payment_account_id": self.t.cash.pk,
            "items": [{"amount": "9.50", "expense_account_id": self.t.supplies.pk}],
        })
        self.assertEqual(response.status_code, 201)
        self.assertIn("transaction_id", response.json())

    def test_seed_accounts_is_idempotent(self):
        response = self.post_json("seed-accounts", {})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["account_count"], 18)

    def test_get_only_on_read_endpoints(self):
        response = self.post_json("account-balances", {})
        self.assertEqual(response.status_code, 405)

    def test_balances_summary_and_audit_logs(self):
        create_invoice(self.t.company, self.t.customer, TODAY,
                       [invoice_line(self.t.sales, "100.00")], user=self.t.user)

        response = self.client.get(reverse("ledger_core:account-balances"),
                                   {"account_type": "revenue"})
        self.assertEqual(response.status_code, 200)
        balances = {row["account_code"]: row["balance"]
                    for row in response.json()["balances"]}
        self.assertEqual(balances, {"4000": "100.00", "4100": "0.00"})

        response = self.client.get(reverse("ledger_core:financial-summary"))
        summary = response.json()["summary"]
        self.assertTrue(summary["is_balanced"])
        self.assertEqual(Decimal(summary["net_income"]), Decimal("100.00"))

        response = self.client.get(reverse("ledger_core:audit-logs"), {"q": "invoices"})
        rows = response.json()["audit_logs"]
        self.assertTrue(rows)
        self.assertTrue(all(row["table_name"] == "invoices" for row in rows))
        self.assertEqual(rows[0]["user"], self.t.user.username)

    def test_unknown_account_type_filter(self):
        response = self.client.get(reverse("ledger_core:account-balances"),
                                   {"account_type": "income"})
        self.assertEqual(response.status_code, 400)


class LedgerViewAccessTests(TestCase):
    def setUp(self):
        self.t = make_tenant()

    def test_anonymous_gets_401(self):
        response = self.client.get(reverse("ledger_core:account-balances"))
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "not_authenticated")

    def test_user_without_company_gets_403(self):
        loner = User.objects.create_user(username="loner", password="pw")
        self.client.force_login(loner)
        response = self.client.get(reverse("ledger_core:account-balances"))
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "no_company")

    def test_viewer_can_read_but_not_write(self):
        viewer = User.objects.create_user(username="viewer", password="pw")
        EntityMembership.objects.create(user=viewer, company=self.t.company,
                                        role="viewer")
        self.client.force_login(viewer)

        self.assertEqual(
            self.client.get(reverse("ledger_core:account-balances")).status_code, 200)

        response = self.client.post(reverse("ledger_core:seed-accounts"),
                                    data="{}", content_type="application/json")
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "forbidden")


@pytest.mark.django_db
def test_views_only_see_the_logged_in_users_company(client):
    a = make_tenant("company-a")
    b = make_tenant("company-b")
    create_invoice(b.company, b.customer, TODAY, [invoice_line(b.sales, "100.00")])

    client.force_login(a.user)
    response = client.get(reverse("ledger_core:financial-summary"))
    assert response.status_code == 200
    assert Decimal(response.json()["summary"]["net_income"]) == Decimal("0.00")
