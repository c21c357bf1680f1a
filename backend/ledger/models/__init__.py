from ledger.models.wallet import Wallet
from ledger.models.transaction import Transaction, TransactionType, TransactionStatus
