from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from ..exceptions import ImmutableRecord
from ..managers import TenantManager
from .account import Account
from .bill import Bill
from .entitymembership import Company
from .invoice import Invoice
from .journal import Transaction

PAYMENT_TYPES = [
    ("customer_payment", "Customer Payment (Received)"),
    ("vendor_payment", "Vendor Payment (Sent)"),
]

PAYMENT_METHODS = [
    ("cash", "Cash"),
    ("bank_transfer", "Bank Transfer"),
    ("credit_card", "Credit Card"),
    ("debit_card", "Debit Card"),
    ("check", "Check"),
]


class Payment(models.Model):
    """Money received against an Invoice or sent against a Bill.

    Immutable once recorded.
    """

    company = models.ForeignKey(Company, on_delete=models.CASCADE)
    payment_type = models.CharField(max_length=20, choices=PAYMENT_TYPES)

    # exactly one target, consistent with payment_type
    invoice = models.ForeignKey(
        Invoice, null=True, blank=True, on_delete=models.PROTECT,
        related_name="payments",
    )
    bill = models.ForeignKey(
        Bill, null=True, blank=True, on_delete=models.PROTECT,
        related_name="payments",
    )

    amount = models.DecimalField(max_digits=18, decimal_places=2)
    payment_method = models.CharField(
        max_length=20, choices=PAYMENT_METHODS, default="cash")

    # Cash / bank account the money moves through
    settlement_account = models.ForeignKey(
        Account, on_delete=models.PROTECT, related_name="+"
    )
    date = models.DateField()
    reference = models.CharField(max_length=200, null=True, blank=True)
    notes = models.TextField(null=True, blank=True)

    # Cash-side posting
    transaction = models.OneToOneField(
        Transaction, null=True, blank=True, on_delete=models.PROTECT,
        related_name="payment",
    )

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True, blank=True, on_delete=models.SET_NULL,
        related_name="+",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "date"], name="pay_company_date_idx"),
            models.Index(fields=["company", "invoice"], name="pay_company_invoice_idx"),
            models.Index(fields=["company", "bill"], name="pay_company_bill_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="payment_positive_amount",
            ),
            # customer payments settle invoices, vendor payments settle bills
            models.CheckConstraint(
                condition=(
                    models.Q(payment_type="customer_payment",
                             invoice__isnull=False, bill__isnull=True) |
                    models.Q(payment_type="vendor_payment",
                             bill__isnull=False, invoice__isnull=True)
                ),
                name="payment_single_consistent_target",
            ),
        ]

    def __str__(self):
        target = self.invoice or self.bill
        return f"{self.get_payment_type_display()} {self.amount} → {target}"

    @property
    def target(self):
        return self.invoice if self.invoice_id else self.bill

    def clean(self):
        if self.invoice_id and self.bill_id:
            raise ValidationError("Payment cannot reference both invoice and bill.")
        target = self.target
        if target is not None and target.company_id != self.company_id:
            raise ValidationError("Payment target must belong to the same company.")
        if self.settlement_account.company_id != self.company_id:
            raise ValidationError(
                "Settlement account must belong to the same company.")

    def save(self, *args, **kwargs):
        if self.pk and Payment.objects.filter(pk=self.pk).exists():
            raise ImmutableRecord(f"Payment {self.pk} cannot be modified.")
        self.full_clean(exclude=["transaction", "created_by"])
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableRecord(f"Payment {self.pk} cannot be deleted.")
