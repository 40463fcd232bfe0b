"""
Stripe Routes - checkout, top-ups, cancellation, billing portal and webhooks.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from haven.api.dependencies import get_current_user, get_payment_provider
from haven.db.models import User
from haven.db.session import get_write_db
from haven.exceptions import (
    InvalidPlanError,
    PaymentProviderError,
    SubscriptionConflictError,
    WebhookVerificationError,
)
from haven.models.api import (
    CancelSubscriptionResponse,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    PortalSessionResponse,
    SubscriptionStatusResponse,
    TopupRequest,
    TopupResponse,
    WebhookResponse,
)
from haven.services.payment_provider import PaymentProvider
from haven.services.subscriptions import SubscriptionService
from haven.services.webhooks import StripeWebhookHandler

logger = get_logger(__name__)

router = APIRouter(prefix="/api/stripe")


def _provider_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Payment provider unavailable",
    )


@router.post("/create-checkout-session", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    request: CheckoutSessionRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> CheckoutSessionResponse:
    try:
        return await SubscriptionService(db, provider).create_checkout(user, request.plan_type)
    except InvalidPlanError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid plan type: {exc.plan_type}",
        ) from exc
    except SubscriptionConflictError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except PaymentProviderError as exc:
        raise _provider_unavailable() from exc


@router.post("/purchase-topup", response_model=TopupResponse)
async def purchase_topup(
    request: TopupRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> TopupResponse:
    """Create a PaymentIntent for voice credits: $15 buys 1000 credits, pro rata."""
    try:
        return await SubscriptionService(db, provider).purchase_topup(user, request.amount)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except PaymentProviderError as exc:
        raise _provider_unavailable() from exc


@router.post("/cancel-subscription", response_model=CancelSubscriptionResponse)
async def cancel_subscription(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> CancelSubscriptionResponse:
    try:
        return await SubscriptionService(db, provider).cancel_subscription(user)
    except SubscriptionConflictError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except PaymentProviderError as exc:
        raise _provider_unavailable() from exc


@router.post("/create-portal-session", response_model=PortalSessionResponse)
async def create_portal_session(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> PortalSessionResponse:
    try:
        url = await SubscriptionService(db, provider).create_portal_session(user)
    except SubscriptionConflictError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except PaymentProviderError as exc:
        raise _provider_unavailable() from exc
    return PortalSessionResponse(url=url)


@router.get("/subscription-status", response_model=SubscriptionStatusResponse)
async def get_subscription_status(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
) -> SubscriptionStatusResponse:
    return await SubscriptionService(db).get_subscription_status(user)


@router.post("/webhooks", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_write_db),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> WebhookResponse:
    """
    Handle Stripe webhook events.

    400 on a missing or bad signature. 500 on a processing error so that
    Stripe retries the delivery.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")
    if not signature:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing stripe-signature header",
        )

    try:
        event = await provider.verify_webhook(payload, signature)
    except WebhookVerificationError as exc:
        logger.error("stripe_webhook_verification_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook signature",
        ) from exc

    logger.info("stripe_webhook_received", event_id=event.event_id, event_type=event.event_type)

    try:
        await StripeWebhookHandler(db, provider).handle(event)
    except Exception as exc:
        logger.error(
            "stripe_webhook_processing_failed",
            event_id=event.event_id,
            event_type=event.event_type,
            error=str(exc),
            exc_info=True,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        ) from exc

    return WebhookResponse(event_type=event.event_type)
