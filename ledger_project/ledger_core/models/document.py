from decimal import Decimal
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from ..exceptions import ImmutableRecord
from .entitymembership import Company
from .journal import Transaction

DOCUMENT_STATUS_CHOICES = [
    ("draft", "Draft"),  # not yet posted, no journal entries
    ("open", "Open"),  # posted, nothing paid
    ("partial", "Partially paid"),
    ("paid", "Paid"),  # fully settled
]

# Status only ever moves forward
ALLOWED_TRANSITIONS = {
    "draft": {"open"},
    "open": {"partial", "paid"},
    "partial": {"partial", "paid"},
    "paid": set(),
}

# Fields frozen once the document is posted
FROZEN_AFTER_POSTING = (
    "date", "due_date", "subtotal", "tax_amount", "total_amount", "company_id",
)


def derive_status(paid_amount, total_amount, posted=True):
    """Document status as a pure function of paid vs total."""
    if not posted:
        return "draft"
    if paid_amount <= 0:
        return "open"
    if paid_amount < total_amount:
        return "partial"
    return "paid"


class PostedDocument(models.Model):
    """
    Shared header of Invoice and Bill.
    `status` is stored for indexing but only ever written together with
    `paid_amount` (see services.payment) or when posting a draft.
    """

    company = models.ForeignKey(Company, on_delete=models.CASCADE)

    date = models.DateField()  # issue date
    due_date = models.DateField(null=True, blank=True)

    subtotal = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))
    tax_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))
    total_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))
    paid_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))

    status = models.CharField(
        max_length=10, choices=DOCUMENT_STATUS_CHOICES, default="draft"
    )
    notes = models.TextField(null=True, blank=True)

    # Revenue / expense recognition entry, set when posted
    posted_transaction = models.OneToOneField(
        Transaction,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="+",
    )

    # Optimistic lock counter, bumped on every paid_amount change
    version = models.PositiveIntegerField(default=0)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True, blank=True, on_delete=models.SET_NULL,
        related_name="+",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True

    @property
    def remaining_amount(self):
        return self.total_amount - self.paid_amount

    @property
    def is_posted(self):
        return self.status != "draft"

    def expected_status(self):
        return derive_status(self.paid_amount, self.total_amount, self.is_posted)

    def clean(self):
        if self.paid_amount < 0 or self.paid_amount > self.total_amount:
            raise ValidationError(
                "paid_amount must stay between 0 and total_amount")
        if self.status != self.expected_status():
            raise ValidationError(
                f"Status {self.status!r} does not match paid amount "
                f"{self.paid_amount} of {self.total_amount}")

    def save(self, *args, **kwargs):
        if self.pk:
            orig = type(self).objects.filter(pk=self.pk).first()
            if orig is not None and orig.status != "draft":
                changed = [
                    f for f in FROZEN_AFTER_POSTING
                    if getattr(orig, f) != getattr(self, f)
                ]
                if changed:
                    raise ImmutableRecord(
                        f"Cannot modify {changed} on a posted {type(self).__name__.lower()}.")
            if orig is not None and self.status != orig.status:
                if self.status not in ALLOWED_TRANSITIONS[orig.status]:
                    raise ValidationError(
                        f"Cannot go from {orig.status} to {self.status}")
        self.full_clean(exclude=["posted_transaction", "created_by"])
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        # Void or credit a posted document instead of deleting it
        if self.is_posted:
            raise ImmutableRecord(
                f"Cannot delete a posted {type(self).__name__.lower()}.")
        return super().delete(*args, **kwargs)
