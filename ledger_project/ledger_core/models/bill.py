from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .account import Account
from .document import PostedDocument
from .vendor import Vendor


# Header represents vendor bill (Accounts Payable document)
class Bill(PostedDocument):
    vendor = models.ForeignKey(
        Vendor,
        # prevent deleting vendor who has a bill
        on_delete=models.PROTECT,
        related_name="bills",
    )
    # Vendor's own bill/invoice number (e.g. "INV-4567")
    bill_number = models.CharField(max_length=64, null=True, blank=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "bill_number"], name="bill_company_number_idx"),
            models.Index(fields=["company", "vendor"], name="bill_company_vendor_idx"),
            models.Index(fields=["company", "status"], name="bill_company_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(paid_amount__gte=0) &
                models.Q(paid_amount__lte=models.F("total_amount")),
                name="bill_paid_within_total",
            ),
        ]

    def __str__(self):
        return f"Bill: {self.bill_number or self.pk}"

    def clean(self):
        super().clean()
        if self.vendor_id and self.vendor.company_id != self.company_id:
            raise ValidationError("Vendor must belong to the same company.")


class BillLine(models.Model):  # items/services on the bill

    bill = models.ForeignKey(
        Bill, on_delete=models.CASCADE, related_name="lines")
    position = models.PositiveIntegerField(default=0)
    description = models.TextField(null=True, blank=True)

    quantity = models.DecimalField(
        max_digits=14, decimal_places=4, default=Decimal("1"))
    unit_price = models.DecimalField(
        max_digits=18, decimal_places=4, default=Decimal("0.00"))
    total_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))

    # Posts to the expense (or cost of goods) account in the GL
    expense_account = models.ForeignKey(
        Account,
        on_delete=models.PROTECT,
        related_name="+",
        help_text="Expense/purchase account for this line",
    )

    class Meta:
        ordering = ["bill", "position"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gt=0) &
                models.Q(unit_price__gte=0),
                name="bl_valid_amounts",
            ),
        ]

    def __str__(self):
        return f"{self.bill} #{self.position}: {self.total_amount}"
