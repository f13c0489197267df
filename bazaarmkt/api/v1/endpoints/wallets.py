"""
Artisan earnings API.

Read-only views of wallets and the payout ledger, plus payout settings.
"""
import uuid
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from bazaarmkt.api.deps import DB, require_admin_token
from bazaarmkt.schemas.wallet import (
    WalletResponse,
    WalletTransactionList,
    WalletTransactionResponse,
    PayoutSettingsUpdate,
)
from bazaarmkt.services.wallet_service import WalletLedger, WalletConfigurationError

logger = logging.getLogger(__name__)


router = APIRouter(tags=["Wallets"], dependencies=[Depends(require_admin_token)])


async def _get_wallet_or_404(ledger: WalletLedger, artisan_id: uuid.UUID):
    wallet = await ledger.get_wallet(artisan_id)
    if wallet is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Wallet not found"
        )
    return wallet


@router.get("/{artisan_id}", response_model=WalletResponse)
async def get_wallet(artisan_id: uuid.UUID, db: DB):
    """Get an artisan's balance and payout settings."""
    return await _get_wallet_or_404(WalletLedger(db), artisan_id)


@router.get("/{artisan_id}/transactions", response_model=WalletTransactionList)
async def list_wallet_transactions(
    artisan_id: uuid.UUID,
    db: DB,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    transaction_type: Optional[str] = Query(None, alias="type", description="Filter by transaction type"),
):
    """Ledger entries for an artisan, newest first."""
    ledger = WalletLedger(db)
    await _get_wallet_or_404(ledger, artisan_id)
    entries = await ledger.list_transactions(artisan_id, limit=limit, offset=offset, transaction_type=transaction_type)
    return WalletTransactionList(
        items=[WalletTransactionResponse.model_validate(e) for e in entries],
        limit=limit,
        offset=offset,
    )


@router.put("/{artisan_id}/payout-settings", response_model=WalletResponse)
async def update_payout_settings(
    artisan_id: uuid.UUID,
    data: PayoutSettingsUpdate,
    db: DB,
):
    """
    Change payout settings.

    Only ``weekly`` and ``monthly`` schedules are accepted; anything else is
    rejected with 422.
    """
    ledger = WalletLedger(db)
    wallet = await _get_wallet_or_404(ledger, artisan_id)

    try:
        wallet = await ledger.configure_payouts(
            wallet,
            schedule=data.schedule,
            enabled=data.enabled,
            minimum_payout=data.minimum_payout,
            next_payout_date=data.next_payout_date,
        )
    except WalletConfigurationError as e:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": e.message, **e.details}
        )

    await db.commit()
    await db.refresh(wallet)
    return wallet
