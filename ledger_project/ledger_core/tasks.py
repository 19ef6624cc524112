import logging

from celery import shared_task
from django.db import models, transaction
from django.utils import timezone

logger = logging.getLogger(__name__)


@shared_task  # register this function as a Celery task
def recompute_balance_snapshots(company_id, snapshot_date=None):
    """
    Rebuild today's (or `snapshot_date`'s) AccountBalanceSnapshot rows for
    one company from its posted journal entries. Returns the row count.
    """
    # import models lazily to avoid circular imports at module import time
    from .models import (Account, AccountBalanceSnapshot, Company,
                         JournalEntry)
    from .services.validation import to_date

    try:
        company = Company.objects.get(pk=company_id)
    except Company.DoesNotExist:
        logger.error("Company %s not found, snapshots not recomputed", company_id)
        return 0

    as_of = to_date(snapshot_date, "snapshot_date", required=False) or timezone.localdate()

    with transaction.atomic():
        # Replace any previous snapshot of this company for that date
        AccountBalanceSnapshot.objects.for_company(company).filter(
            snapshot_date=as_of).delete()

        count = 0
        for account in Account.objects.for_company(company).order_by("code"):
            # Cumulative posted debits / credits up to the snapshot date
            agg = JournalEntry.posted.filter(
                account=account, date__lte=as_of,
            ).aggregate(
                debit=models.Sum("debit"),
                credit=models.Sum("credit"),
            )
            # If nothing was posted, Django returns None, so fall back to 0
            debit = agg["debit"] or 0
            credit = agg["credit"] or 0

            AccountBalanceSnapshot.objects.create(
                company=company,
                account=account,
                snapshot_date=as_of,
                debit_balance=debit,
                credit_balance=credit,
                balance=account.signed_balance(debit, credit),
            )
            count += 1

    logger.info("Recomputed %d balance snapshots for company %s as of %s",
                count, company.slug, as_of)
    return count
