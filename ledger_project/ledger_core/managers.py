from django.db import models


# -----------------------------------------
# Enforce tenant scoping across all models
# that belong to a company
# -----------------------------------------
class TenantQuerySet(models.QuerySet):
    def for_company(self, company):
        return self.filter(company=company)

    def active(self, company):
        return self.filter(company=company, is_active=True)


class TenantManager(models.Manager.from_queryset(TenantQuerySet)):
    """Every tenant-owned model gets `.for_company()` on its default manager.

        Invoice.objects.for_company(company).get(pk=invoice_id)
    """


# Only journal entries of committed transactions count towards balances
class PostedJournalEntryManager(TenantManager):
    def get_queryset(self):
        return super().get_queryset().filter(
            transaction__posted_at__isnull=False)
