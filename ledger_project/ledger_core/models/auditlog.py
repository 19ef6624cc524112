from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from ..managers import TenantManager
from .entitymembership import Company

AUDIT_ACTIONS = [
    ("insert", "Insert"),
    ("update", "Update"),
    ("delete", "Delete"),
]


# ---------- Audit / Event log ----------
class AuditLog(
    models.Model
):  # Gives accountability and traceability across whole system
    company = models.ForeignKey(
        Company,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )
    # Which user performed the action
    # (Nullable in case the action was automated, e.g. a Celery task)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True, blank=True, on_delete=models.SET_NULL
    )
    action = models.CharField(max_length=10, choices=AUDIT_ACTIONS)
    # What kind of record was affected, e.g. "invoices", "payments"
    table_name = models.CharField(max_length=100)
    record_id = models.CharField(max_length=100)
    # Before/after snapshots of the row
    old_values = models.JSONField(null=True, blank=True, encoder=DjangoJSONEncoder)
    new_values = models.JSONField(null=True, blank=True, encoder=DjangoJSONEncoder)
    created_at = models.DateTimeField(auto_now_add=True)

    # Enforce tenant scoping
    objects = TenantManager()

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["company", "created_at"], name="audit_company_created_idx"),
            models.Index(fields=["company", "table_name", "record_id"],
                         name="audit_company_record_idx"),
        ]

    def __str__(self):
        time = self.created_at
        return f"[{time:%Y-%m-%d %H:%M}] {self.user} {self.action} {self.table_name}({self.record_id})"

    def clean(self):
        if self.action not in dict(AUDIT_ACTIONS):
            raise ValidationError(f"Unknown audit action {self.action!r}")
        # Ensure the user is a member of the company being logged
        if self.user_id and self.company_id:
            if not self.user.memberships.filter(
                company_id=self.company_id, is_active=True
            ).exists():
                raise ValidationError(
                    "AuditLog.user must be a member of AuditLog.company"
                )

    def save(self, *args, **kwargs):
        self.full_clean()  # run validations before saving
        return super().save(*args, **kwargs)
