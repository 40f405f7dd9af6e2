"""API routes for the seller wallet and payouts.

This module provides REST endpoints for:
- GET /api/v1/wallet - Wallet summary
- GET /api/v1/wallet/transactions - Wallet transaction history
- GET /api/v1/wallet/payouts - Payout history
- POST /api/v1/wallet/payouts - Request a payout
- DELETE /api/v1/wallet/payouts/{payout_id} - Cancel a pending payout
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_db, get_notifier, to_http_exception
from app.core.exceptions import MarketplaceError
from app.models.transaction import TransactionType
from app.models.user import User
from app.models.wallet import PayoutStatus
from app.schemas.wallet import (
    BankAccount,
    PayoutCreateRequest,
    PayoutListResponse,
    PayoutResponse,
    WalletSummaryResponse,
    WalletTransactionHistoryResponse,
    WalletTransactionResponse,
)
from app.services.notification_service import Notifier
from app.services.payout_service import get_payout_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/wallet", tags=["wallet"])


@router.get(
    "",
    response_model=WalletSummaryResponse,
    summary="Get wallet summary",
    description="Balances, withdrawability and recent activity for the seller",
)
async def get_wallet(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> WalletSummaryResponse:
    service = get_payout_service(db)
    try:
        summary = await service.get_wallet_summary(current_user.id)
    except MarketplaceError as e:
        raise to_http_exception(e)
    return WalletSummaryResponse.model_validate(summary, from_attributes=True)


@router.get(
    "/transactions",
    response_model=WalletTransactionHistoryResponse,
    summary="Get wallet transaction history",
)
async def get_wallet_transactions(
    transaction_type: Optional[TransactionType] = Query(
        default=None,
        description="Filter by transaction type",
    ),
    limit: int = Query(default=50, ge=1, le=100, description="Page size"),
    offset: int = Query(default=0, ge=0, description="Offset for pagination"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> WalletTransactionHistoryResponse:
    """Get paginated wallet transactions for the seller.

    Args:
        transaction_type: Optional filter (purchase_revenue, payout, refund)
        limit: Maximum number of transactions to return
        offset: Number of transactions to skip
        current_user: Authenticated user
        db: Database session

    Returns:
        WalletTransactionHistoryResponse with transactions and total
    """
    service = get_payout_service(db)
    transactions, total = await service.get_wallet_transactions(
        current_user.id,
        limit=limit,
        offset=offset,
        transaction_type=transaction_type,
    )
    return WalletTransactionHistoryResponse(
        transactions=[WalletTransactionResponse.model_validate(t) for t in transactions],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/payouts",
    response_model=PayoutListResponse,
    summary="Get payout history",
)
async def list_payouts(
    payout_status: Optional[PayoutStatus] = Query(
        default=None, alias="status", description="Filter by status"
    ),
    limit: int = Query(default=20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> PayoutListResponse:
    service = get_payout_service(db)
    payouts = await service.get_payout_history(current_user.id, limit=limit, status=payout_status)
    return PayoutListResponse(payouts=[PayoutResponse.model_validate(p) for p in payouts])


@router.post(
    "/payouts",
    response_model=PayoutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Request a payout",
    description="Withdraw wallet balance to a bank account",
)
async def request_payout(
    request: PayoutCreateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> PayoutResponse:
    """Request a payout.

    The amount is reserved from the wallet immediately; the bank transfer
    fee is deducted from it.

    Raises:
        HTTPException(400): Below the minimum, or the fee exceeds the amount
        HTTPException(402): Balance too low
        HTTPException(404): No wallet
        HTTPException(409): Another payout is pending or processing
    """
    seller_id = current_user.id
    service = get_payout_service(db, notifier=notifier)
    bank = BankAccount.model_validate(request.model_dump(exclude={"amount"}))
    try:
        payout = await service.request_payout(seller_id, request.amount, bank)
    except MarketplaceError as e:
        logger.info(f"Payout rejected for seller {seller_id}: {e.code}")
        raise to_http_exception(e)
    return PayoutResponse.model_validate(payout)


@router.delete(
    "/payouts/{payout_id}",
    response_model=PayoutResponse,
    summary="Cancel a pending payout",
)
async def cancel_payout(
    payout_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
) -> PayoutResponse:
    service = get_payout_service(db, notifier=notifier)
    try:
        payout = await service.cancel_payout(payout_id, current_user.id)
    except MarketplaceError as e:
        raise to_http_exception(e)
    return PayoutResponse.model_validate(payout)
