from django.urls import path

from . import views

app_name = "ledger_core"

urlpatterns = [
    path("invoices/", views.create_invoice_view, name="create-invoice"),
    path("bills/", views.create_bill_view, name="create-bill"),
    path("expenses/", views.create_expense_view, name="create-expense"),
    path("payments/", views.process_payment_view, name="process-payment"),
    path("accounts/seed/", views.seed_accounts_view, name="seed-accounts"),
    path("balances/", views.account_balances_view, name="account-balances"),
    path("reports/summary/", views.financial_summary_view, name="financial-summary"),
    path("audit-logs/", views.audit_logs_view, name="audit-logs"),
]
