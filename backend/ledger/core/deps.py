from functools import lru_cache
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from ledger.core.security import decode_token
from ledger.database import AsyncSessionLocal
from ledger.services.ledger_engine import LedgerEngine
from ledger.services.portfolio import PortfolioValuator
from ledger.services.pricing import PriceOracle, get_price_oracle

bearer = HTTPBearer()

async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(bearer),
) -> str:
    user_id = decode_token(credentials.credentials)
    if not user_id:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    return user_id

@lru_cache
def get_oracle() -> PriceOracle:
    return get_price_oracle()

# One engine per process so every request shares the same wallet locks
@lru_cache
def get_ledger_engine() -> LedgerEngine:
    return LedgerEngine(AsyncSessionLocal, get_oracle())

@lru_cache
def get_valuator() -> PortfolioValuator:
    return PortfolioValuator(AsyncSessionLocal, get_oracle())
