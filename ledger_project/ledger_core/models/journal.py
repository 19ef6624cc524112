from decimal import Decimal
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from ..exceptions import ImmutableRecord
from ..managers import PostedJournalEntryManager, TenantManager
from .account import Account
from .customer import Customer
from .entitymembership import Company
from .vendor import Vendor


# ---------- Transaction (Header) & JournalEntry (lines) ----------
class Transaction(models.Model):  # Represents one balanced posting
    """
    Groups the journal entries of one money-moving action.
    Created only by services.posting.post_transaction(), never edited after.
    Corrections are new offsetting transactions.
    """

    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    date = models.DateField()
    description = models.TextField(null=True, blank=True)

    # Optional counterparty
    customer = models.ForeignKey(
        Customer, null=True, blank=True, on_delete=models.PROTECT
    )
    vendor = models.ForeignKey(
        Vendor, null=True, blank=True, on_delete=models.PROTECT
    )

    # Sum of debits (== sum of credits)
    total_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00")
    )

    # Helps trace back where the transaction originated
    # (invoice, bill, payment, expense, manual)
    source_type = models.CharField(max_length=50, null=True, blank=True)
    source_id = models.BigIntegerField(null=True, blank=True)

    posted_at = models.DateTimeField(null=True, blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True, blank=True, on_delete=models.SET_NULL
    )

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "date"], name="txn_company_date_idx"),
            models.Index(fields=["company", "source_type", "source_id"],
                         name="txn_company_source_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=~(models.Q(customer__isnull=False) &
                            models.Q(vendor__isnull=False)),
                name="txn_single_counterparty",
            ),
        ]

    def __str__(self):
        return f"TXN {self.pk} {self.date} {self.total_amount}"

    # Aggregate all debit and credit amounts across the entries
    def compute_totals(self):
        """Return (debits, credits) sums for entries"""
        aggs = self.entries.aggregate(
            total_debit=models.Sum("debit"),
            total_credit=models.Sum("credit"),
        )
        return (
            aggs["total_debit"] or Decimal("0.00"),
            aggs["total_credit"] or Decimal("0.00"),
        )

    def is_balanced(self):
        debit, credit = self.compute_totals()
        return debit == credit

    def save(self, *args, **kwargs):
        if self.pk and Transaction.objects.filter(pk=self.pk).exists():
            raise ImmutableRecord(
                f"Transaction {self.pk} is posted and cannot be modified.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableRecord(
            f"Transaction {self.pk} is posted and cannot be deleted.")


class JournalEntry(models.Model):  # Stores lines ( credits / debits )
    """
    Each entry belongs to a transaction and to a GL account.
    """

    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    transaction = models.ForeignKey(
        Transaction,
        on_delete=models.PROTECT,
        related_name="entries",
    )

    # can't delete an account if entries point to it
    account = models.ForeignKey(
        Account, on_delete=models.PROTECT, related_name="journal_entries"
    )

    description = models.CharField(max_length=400, null=True, blank=True)
    debit = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))
    credit = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))
    date = models.DateField()

    # Custom managers
    objects = TenantManager()  # Enforce tenant scoping
    posted = PostedJournalEntryManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "account"], name="je_company_account_idx"),
            models.Index(fields=["company", "transaction"], name="je_company_txn_idx"),
        ]

        # Enforce debits and credits must be non-negative
        constraints = [
            models.CheckConstraint(
                condition=(
                    models.Q(debit__gte=0) &
                    models.Q(credit__gte=0)
                ),
                name="je_non_negative_amounts",
            ),
        ]

    def __str__(self):
        return f"{self.transaction_id} | {self.account.code} | D:{self.debit} C:{self.credit}"

    def clean(self):
        # redundant with CheckConstraint but useful at app-level
        if self.debit < 0 or self.credit < 0:
            raise ValidationError("Debit and credit must be >= 0")

        # Prevent cross-company contamination
        if self.account_id and self.account.company_id != self.company_id:
            raise ValidationError(
                "JournalEntry.account must belong to the same company.")
        if self.transaction_id and self.transaction.company_id != self.company_id:
            raise ValidationError(
                "JournalEntry.company must equal Transaction.company")

    def save(self, *args, **kwargs):
        if self.pk and JournalEntry.objects.filter(pk=self.pk).exists():
            raise ImmutableRecord(
                f"JournalEntry {self.pk} is posted and cannot be modified.")
        if not getattr(self, "company_id", None) and self.transaction_id:
            self.company_id = self.transaction.company_id
        self.full_clean()
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableRecord(
            f"JournalEntry {self.pk} is posted and cannot be deleted.")


class TransactionItem(models.Model):
    """Item of a direct expense transaction (no Bill document behind it)."""

    transaction = models.ForeignKey(
        Transaction, on_delete=models.PROTECT, related_name="items"
    )
    description = models.CharField(max_length=400, null=True, blank=True)
    expense_account = models.ForeignKey(Account, on_delete=models.PROTECT)
    amount = models.DecimalField(max_digits=18, decimal_places=2)

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="txn_item_positive_amount",
            ),
        ]

    def __str__(self):
        return f"{self.description or self.expense_account.name}: {self.amount}"
