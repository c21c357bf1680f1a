from pydantic import BaseModel
from decimal import Decimal

# Amount and price checks live in the engine so they fail with the ledger's error codes

class DepositRequest(BaseModel):
    asset: str
    amount: Decimal

class WithdrawRequest(BaseModel):
    asset: str
    amount: Decimal

class TradeRequest(BaseModel):
    type: str
    asset: str
    amount: Decimal
    price: Decimal
