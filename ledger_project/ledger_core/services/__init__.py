from .accounts import (create_account, get_system_account, list_accounts,
                       seed_default_accounts)
from .audit_helper import log_action, recent_audit_logs
from .balances import account_balances, financial_summary
from .documents import (create_bill, create_expense_transaction, create_invoice,
                        post_bill, post_invoice)
from .payment import record_payment
from .posting import post_transaction
