from decimal import Decimal
from django.core.exceptions import ValidationError
from django.db import models
from ..managers import TenantManager
from .account import Account
from .customer import Customer
from .document import PostedDocument


class Invoice(PostedDocument):  # Represents a customer invoice

    customer = models.ForeignKey(
        Customer,
        # prevent deleting customer who has an invoice
        on_delete=models.PROTECT,
        related_name="invoices",
    )

    # human-readable (e.g. "INV-00001"), generated when not supplied
    invoice_number = models.CharField(max_length=64)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        indexes = [
            models.Index(fields=["company", "invoice_number"], name="inv_company_number_idx"),
            models.Index(fields=["company", "customer"], name="inv_company_customer_idx"),
            models.Index(fields=["company", "status"], name="inv_company_status_idx"),
        ]
        constraints = [
            # Within one company, each invoice number must be unique
            models.UniqueConstraint(
                fields=["company", "invoice_number"],
                name="uq_invoice_company_number"
            ),
            models.CheckConstraint(
                condition=models.Q(paid_amount__gte=0) &
                models.Q(paid_amount__lte=models.F("total_amount")),
                name="invoice_paid_within_total",
            ),
        ]

    def __str__(self):
        return f"Inv {self.invoice_number or self.pk}"

    def clean(self):
        super().clean()
        if self.customer_id and self.customer.company_id != self.company_id:
            raise ValidationError("Customer must belong to the same company.")


class InvoiceLine(models.Model):  # product/service sold on the invoice

    invoice = models.ForeignKey(
        Invoice, on_delete=models.CASCADE, related_name="lines")
    position = models.PositiveIntegerField(default=0)  # keeps line order
    description = models.TextField(null=True, blank=True)

    # quantity × unit_price = total_amount
    quantity = models.DecimalField(
        max_digits=14, decimal_places=4, default=Decimal("1"))
    unit_price = models.DecimalField(
        max_digits=18, decimal_places=4, default=Decimal("0.00"))
    total_amount = models.DecimalField(
        max_digits=18, decimal_places=2, default=Decimal("0.00"))

    # Post to the correct revenue GL account
    revenue_account = models.ForeignKey(
        Account,
        on_delete=models.PROTECT,
        related_name="+",
        help_text="Sales / revenue account for this line",
    )

    class Meta:
        ordering = ["invoice", "position"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gt=0) &
                models.Q(unit_price__gte=0),
                name="invl_valid_amounts",
            ),
        ]

    def __str__(self):
        return f"{self.invoice} #{self.position}: {self.total_amount}"
