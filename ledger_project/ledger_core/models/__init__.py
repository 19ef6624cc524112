from .account import Account
from .auditlog import AuditLog
from .bill import Bill, BillLine
from .customer import Customer
from .document import PostedDocument, derive_status
from .entitymembership import Company, EntityMembership
from .invoice import Invoice, InvoiceLine
from .journal import JournalEntry, Transaction, TransactionItem
from .payment import Payment
from .snapshot import AccountBalanceSnapshot
from .vendor import Vendor
