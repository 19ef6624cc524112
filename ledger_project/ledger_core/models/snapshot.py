from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .account import Account
from .entitymembership import Company


# ---------- Account Balance Snapshot (materialized) ----------
class AccountBalanceSnapshot(
    models.Model
):  # Reporting cache, rebuilt by tasks.recompute_balance_snapshots

    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    account = models.ForeignKey(Account, on_delete=models.CASCADE)
    # The date the snapshot is taken
    snapshot_date = models.DateField()
    # Cumulative posted debits / credits up to snapshot_date
    debit_balance = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    credit_balance = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )
    # debit_balance - credit_balance in the account's natural sign
    balance = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [models.Index(fields=["company", "snapshot_date"], name="snap_company_date_idx")]

        constraints = [
            models.CheckConstraint(
                condition=(
                    models.Q(debit_balance__gte=0) &
                    models.Q(credit_balance__gte=0)
                ),
                name="ab_snap_non_negative_amounts",
            ),
            # Do not store duplicate snapshots for the same account/date
            models.UniqueConstraint(
                fields=["company", "account", "snapshot_date"],
                name="uq_company_account_snapshot_date",
            ),
        ]

    def __str__(self):
        return (
            f"{self.company.slug} {self.snapshot_date} | {self.account.code}: "
            f"D {self.debit_balance} / C {self.credit_balance}"
        )

    def clean(self):
        ac = self.account
        if ac and ac.company_id != self.company_id:
            raise ValidationError("Account must belong to the same company.")

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)
