from django.core.management.base import BaseCommand, CommandError

from ledger_core.exceptions import LedgerError
from ledger_core.models import Company
from ledger_core.services.operations import copy_default_accounts_for_user


class Command(BaseCommand):
    help = "Copy the default chart of accounts into a company (no-op if it has accounts)."

    # Define command-line argument
    def add_arguments(self, parser):
        parser.add_argument(
            "--company",
            required=True,
            help="Slug of the company to seed.",
        )

    def handle(self, *args, **options):
        slug = options["company"]
        try:
            company = Company.objects.get(slug=slug)
        except Company.DoesNotExist:
            raise CommandError(f"Company {slug!r} does not exist")

        try:
            accounts = copy_default_accounts_for_user(company)
        except LedgerError as exc:
            raise CommandError(exc.message)

        self.stdout.write(self.style.SUCCESS(
            f"{company.name} has {len(accounts)} accounts"))
