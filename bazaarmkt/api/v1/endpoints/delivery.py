"""
Delivery buffer API.

POST /delivery/buffer/quote      buffered price to show the customer
POST /delivery/buffer/reconcile  what to do once the real courier cost is known
"""
from datetime import timedelta
import logging

from fastapi import APIRouter

from bazaarmkt.api.deps import DB, Cache
from bazaarmkt.db_types import utcnow
from bazaarmkt.schemas.delivery import (
    BufferQuoteRequest,
    BufferQuoteResponse,
    ReconcileRequest,
    ReconcileResponse,
)
from bazaarmkt.services.delivery_buffer import (
    ExcessDecision,
    compute_buffer,
    quote_expires_at,
    reconcile_delivery_cost,
)
from bazaarmkt.services.platform_settings_service import PlatformSettingsService

logger = logging.getLogger(__name__)


router = APIRouter(tags=["Delivery"])


@router.post("/buffer/quote", response_model=BufferQuoteResponse)
async def quote_delivery_buffer(data: BufferQuoteRequest, db: DB, cache: Cache):
    """Pad a courier estimate with the platform buffer."""
    config = await PlatformSettingsService(db, cache).get_buffer_config()
    quote = compute_buffer(data.estimated_fee, config)
    quoted_at = utcnow()
    return BufferQuoteResponse(
        **quote.model_dump(),
        quoted_at=quoted_at,
        expires_at=quote_expires_at(quoted_at, config),
    )


@router.post("/buffer/reconcile", response_model=ReconcileResponse)
async def reconcile_delivery(data: ReconcileRequest, db: DB, cache: Cache):
    """
    Compare the charged delivery amount with the final courier cost.

    An ``ask`` decision comes with the deadline after which silence counts
    as the artisan declining.
    """
    config = await PlatformSettingsService(db, cache).get_buffer_config()
    outcome = reconcile_delivery_cost(data.charged_amount, data.actual_cost, config)

    response = ReconcileResponse(**outcome.model_dump())
    if outcome.decision == ExcessDecision.ASK:
        response.requires_artisan_response = True
        response.artisan_response_deadline = utcnow() + timedelta(
            seconds=config.artisan_response_timeout
        )

    logger.info(
        f"Delivery reconcile: charged {outcome.charged_amount}, actual {outcome.actual_cost}, "
        f"decision={outcome.decision}, refund_due={outcome.refund_due}"
    )
    return response
