from django.db.models.signals import pre_delete
from django.dispatch import receiver

from .exceptions import ImmutableRecord
from .models import Bill, Invoice, JournalEntry, Payment, Transaction

# Model.delete() already refuses for these; the signals also cover
# deletes that bypass it (cascades, queryset.delete() on collected rows).
# Accounts are guarded in Account.delete(): the PROTECT on journal entries
# fires during collection, before any pre_delete signal.


@receiver(pre_delete, sender=Invoice)
@receiver(pre_delete, sender=Bill)
def prevent_delete_posted_document(sender, instance, **kwargs):
    if instance.is_posted:
        raise ImmutableRecord(
            f"Cannot delete a posted {sender.__name__.lower()} ({instance.pk}).")


@receiver(pre_delete, sender=Transaction)
@receiver(pre_delete, sender=JournalEntry)
@receiver(pre_delete, sender=Payment)
def prevent_delete_ledger_record(sender, instance, **kwargs):
    raise ImmutableRecord(f"{sender.__name__} {instance.pk} cannot be deleted.")
