"""API routes for the credits balance.

- GET /api/v1/credits - Balance and latest history
- POST /api/v1/credits - Claim the bonus grant
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_db, to_http_exception
from app.core.exceptions import MarketplaceError
from app.models.user import User
from app.schemas.credits import BonusResponse, CreditHistoryResponse, CreditSummaryResponse
from app.services.ledger_service import DAILY_BONUS_CREDITS, get_ledger_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/credits", tags=["credits"])


@router.get(
    "",
    response_model=CreditSummaryResponse,
    summary="Get credits balance",
    description="Current credits and the latest credit history entries",
)
async def get_credits(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> CreditSummaryResponse:
    ledger = get_ledger_service(db)
    summary = await ledger.get_credit_summary(current_user.id)
    return CreditSummaryResponse(
        credits=summary["credits"],
        history=[CreditHistoryResponse.model_validate(h) for h in summary["history"]],
    )


@router.post(
    "",
    response_model=BonusResponse,
    summary="Claim bonus credits",
)
async def claim_bonus(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> BonusResponse:
    ledger = get_ledger_service(db)
    try:
        balance = await ledger.grant_bonus(current_user.id, DAILY_BONUS_CREDITS)
    except MarketplaceError as e:
        raise to_http_exception(e)

    return BonusResponse(
        credits=balance,
        granted=DAILY_BONUS_CREDITS,
        message=f"{DAILY_BONUS_CREDITS} bonus credits granted",
    )
