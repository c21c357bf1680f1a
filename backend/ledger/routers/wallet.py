from fastapi import APIRouter, Depends, Query
from ledger.core.deps import get_current_user_id, get_ledger_engine, get_valuator
from ledger.schemas.wallet import DepositRequest, WithdrawRequest, TradeRequest
from ledger.services.ledger_engine import LedgerEngine
from ledger.services.portfolio import PortfolioValuator

router = APIRouter(prefix="/api/wallet", tags=["wallet"])


@router.get("/balance")
async def get_balances(
    user_id: str = Depends(get_current_user_id),
    engine: LedgerEngine = Depends(get_ledger_engine),
    valuator: PortfolioValuator = Depends(get_valuator),
):
    wallets = await engine.list_wallets(user_id)
    return {
        "balances": [w.to_dict() for w in wallets],
        "total_value": str(await valuator.total_portfolio_value(user_id)),
        "currency": "USD",
    }


@router.get("/balance/{asset}")
async def get_balance(
    asset: str,
    user_id: str = Depends(get_current_user_id),
    engine: LedgerEngine = Depends(get_ledger_engine),
):
    wallet = await engine.get_wallet(user_id, asset)
    return wallet.to_dict()


@router.post("/deposit")
async def deposit(
    body: DepositRequest,
    user_id: str = Depends(get_current_user_id),
    engine: LedgerEngine = Depends(get_ledger_engine),
):
    txn = await engine.deposit(user_id, body.asset, body.amount)
    return {"message": "Deposit successful", "transaction": txn.to_dict()}


@router.post("/withdraw")
async def withdraw(
    body: WithdrawRequest,
    user_id: str = Depends(get_current_user_id),
    engine: LedgerEngine = Depends(get_ledger_engine),
):
    txn = await engine.withdraw(user_id, body.asset, body.amount)
    return {"message": "Withdrawal successful", "transaction": txn.to_dict()}


@router.post("/trade")
async def trade(
    body: TradeRequest,
    user_id: str = Depends(get_current_user_id),
    engine: LedgerEngine = Depends(get_ledger_engine),
):
    txn = await engine.execute_trade(user_id, body.type, body.asset, body.amount, body.price)
    return {"message": "Trade executed successfully", "transaction": txn.to_dict()}


@router.get("/history")
async def get_history(
    page: int = Query(0),
    size: int = Query(20),
    user_id: str = Depends(get_current_user_id),
    engine: LedgerEngine = Depends(get_ledger_engine),
):
    result = await engine.list_transactions(user_id, page, size)
    return {
        "transactions": [t.to_dict() for t in result.items],
        "total_elements": result.total,
        "total_pages": result.pages,
        "current_page": result.page,
        "size": result.size,
    }


@router.get("/portfolio")
async def get_portfolio(
    user_id: str = Depends(get_current_user_id),
    engine: LedgerEngine = Depends(get_ledger_engine),
    valuator: PortfolioValuator = Depends(get_valuator),
):
    wallets = await engine.list_wallets(user_id)
    summary = await valuator.portfolio_summary(user_id, wallets)
    summary["total_value"] = str(summary["total_value"])
    summary["performance"] = {k: str(v) for k, v in summary["performance"].items()}
    return summary


@router.get("/trading-volume")
async def get_trading_volume(
    user_id: str = Depends(get_current_user_id),
    valuator: PortfolioValuator = Depends(get_valuator),
):
    return {"trading_volume": str(await valuator.total_trading_volume(user_id)), "currency": "USD"}


@router.get("/profit-loss")
async def get_profit_loss(
    user_id: str = Depends(get_current_user_id),
    valuator: PortfolioValuator = Depends(get_valuator),
):
    return {"profit_loss": str(await valuator.profit_and_loss(user_id)), "currency": "USD"}
