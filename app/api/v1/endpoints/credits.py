from fastapi import APIRouter, Depends
from app.api.deps import get_current_active_user, get_ledger
from app.models.auth import CreditBalance, User
from app.services.credits import CreditLedger

router = APIRouter()


@router.get("", response_model=CreditBalance)
async def get_credits(
    current_user: User = Depends(get_current_active_user),
    ledger: CreditLedger = Depends(get_ledger),
):
    """Caller's remaining credit units"""
    balance = await ledger.get_balance(current_user.id)
    return CreditBalance(user_id=current_user.id, balance=balance)
