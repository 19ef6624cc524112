from django.core.exceptions import ValidationError
from django.db import models
from ..exceptions import ImmutableRecord
from ..managers import TenantManager
from .entitymembership import Company

# Choice Lists
AC_TYPES = [
    # Used in Account model to classify general ledger accounts
    ("asset", "Asset"),
    ("liability", "Liability"),
    ("equity", "Equity"),
    ("revenue", "Revenue"),
    ("cogs", "Cost of Goods Sold"),
    ("expense", "Expense"),
]

# Define whether the account normally increases
# on the debit side or credit side
NORMAL_BALANCE = [
    ("debit", "Debit"),
    ("credit", "Credit"),
]

# Fixed per type: asset/cogs/expense are debit-positive,
# liability/equity/revenue are credit-positive
NORMAL_BALANCE_BY_TYPE = {
    "asset": "debit",
    "cogs": "debit",
    "expense": "debit",
    "liability": "credit",
    "equity": "credit",
    "revenue": "credit",
}

# Accounts the posting services look up by purpose rather than by id
SYSTEM_ROLES = [
    ("cash", "Cash"),
    ("bank", "Bank"),
    ("accounts_receivable", "Accounts Receivable"),
    ("accounts_payable", "Accounts Payable"),
    ("tax_payable", "Tax Payable"),
    ("owner_equity", "Owner Equity"),
]


class Account(models.Model):
    """
    Ledger account in a company's Chart of Accounts.
    - code is unique per company
    - ac_type determines the normal balance and the report it lands on
    - system_role marks the AR / AP / tax / cash accounts posting relies on
    """

    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    code = models.CharField(max_length=32)
    name = models.CharField(max_length=200)
    description = models.TextField(null=True, blank=True)

    ac_type = models.CharField(max_length=10, choices=AC_TYPES)

    # Always derived from ac_type in save()
    normal_balance = models.CharField(
        max_length=6,
        choices=NORMAL_BALANCE,
        default="debit",
    )

    system_role = models.CharField(
        max_length=32, choices=SYSTEM_ROLES, null=True, blank=True
    )

    # "soft deactivate" accounts (stop new postings) without deleting history
    is_active = models.BooleanField(default=True)
    # marker for accounts that must reconcile with subledgers (AR / AP)
    is_control_account = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        ordering = ["company", "code"]
        indexes = [
            # For reports grouped by ac_type
            models.Index(fields=["company", "ac_type"], name="acct_company_type_idx"),
            models.Index(fields=["company", "code"], name="acct_company_code_idx"),
        ]

        """ Each company defines its own chart of accounts.
               Codes repeat across companies but must be unique within one. """
        constraints = [
            models.UniqueConstraint(
                fields=["company", "code"], name="uq_company_account_code"
            ),
            models.UniqueConstraint(
                fields=["company", "system_role"],
                condition=models.Q(system_role__isnull=False),
                name="uq_company_account_system_role",
            ),
        ]

    def __str__(self):
        return f"{self.code} – {self.name}"

    @property
    def is_debit_normal(self):
        return NORMAL_BALANCE_BY_TYPE[self.ac_type] == "debit"

    def signed_balance(self, total_debit, total_credit):
        """Balance in the account's natural sign."""
        if self.is_debit_normal:
            return total_debit - total_credit
        return total_credit - total_debit

    def clean(self):
        if self.ac_type not in NORMAL_BALANCE_BY_TYPE:
            raise ValidationError(f"Unknown account type {self.ac_type!r}")
        if not (self.code or "").strip():
            raise ValidationError("Account code is required")

    def save(self, *args, **kwargs):
        self.normal_balance = NORMAL_BALANCE_BY_TYPE.get(
            self.ac_type, self.normal_balance)

        if self.pk:
            # can't disable accounts used in journal entries
            old = Account.objects.filter(pk=self.pk).first()
            if old and old.is_active and not self.is_active:
                from .journal import JournalEntry

                if JournalEntry.objects.filter(account=self).exists():
                    raise ValidationError(
                        "Cannot disable an account that is used in journal entries."
                    )
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        # history stays readable; deactivate instead
        if self.journal_entries.exists():
            raise ImmutableRecord(
                f"Cannot delete account {self.code}: it has journal entries.")
        return super().delete(*args, **kwargs)
