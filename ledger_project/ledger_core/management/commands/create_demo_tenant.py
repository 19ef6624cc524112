import datetime
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils.text import slugify

from ledger_core.models import Company, Customer, EntityMembership
from ledger_core.services import (create_invoice, get_system_account,
                                  record_payment, seed_default_accounts)

User = get_user_model()


class Command(BaseCommand):
    help = (
        "Create a demo tenant (company), user, and sample financial data for testing."
    )

    # Define command-line arguments
    def add_arguments(self, parser):
        parser.add_argument(
            "--company-name",  # Define flag
            default="Demo Company",
            help="Name of the demo company to create.",
        )
        parser.add_argument(
            "--username", default="demo", help="Username for the demo user."
        )
        parser.add_argument(
            "--password", default="demo123", help="Password for the demo user."
        )

    @transaction.atomic
    def handle(self, *args, **options):
        # Read arguments from add_arguments()
        company_name = options["company_name"]
        username = options["username"]
        password = options["password"]

        # 1. Create user
        user, created = User.objects.get_or_create(
            username=username,
            defaults={"email": f"{username}@example.com"},
        )
        if created:  # if user newly created
            user.set_password(password)
            user.save()
        self.stdout.write(
            self.style.SUCCESS(f"User: {user.username} (pw={password})")
        )

        # 2. Create company with a unique slug ("Demo Co" -> "demo-co", "demo-co-1", ...)
        base = slugify(company_name) or "company"
        slug, i = base, 1
        while Company.objects.filter(slug=slug).exists():
            slug = f"{base}-{i}"
            i += 1
        company = Company.objects.create(name=company_name, slug=slug, owner=user)
        EntityMembership.objects.create(user=user, company=company, role="owner")
        self.stdout.write(self.style.SUCCESS(f"Created company: {company} ({slug})"))

        # 3. Default chart of accounts
        accounts = seed_default_accounts(company, user=user)
        self.stdout.write(self.style.SUCCESS(f"Seeded {len(accounts)} accounts"))

        # 4. One posted invoice, partially paid from the bank
        customer = Customer.objects.create(company=company, name=f"{company_name} Customer")
        revenue = next(a for a in accounts if a.ac_type == "revenue")
        today = datetime.date.today()
        invoice = create_invoice(
            company,
            customer,
            today,
            [
                {"description": "Consulting", "quantity": 10,
                 "unit_price": "100.00", "revenue_account_id": revenue.pk},
            ],
            due_date=today + datetime.timedelta(days=30),
            user=user,
        )
        self.stdout.write(self.style.SUCCESS(
            f"Created invoice {invoice.invoice_number}: {invoice.total_amount}"))

        payment = record_payment(
            company,
            "customer_payment",
            invoice.pk,
            Decimal("500.00"),
            today,
            get_system_account(company, "bank"),
            payment_method="bank_transfer",
            user=user,
        )
        invoice.refresh_from_db()
        self.stdout.write(self.style.SUCCESS(
            f"Recorded payment {payment.pk}: invoice is {invoice.status}"))
        self.stdout.write(self.style.SUCCESS("Demo tenant setup complete!"))
