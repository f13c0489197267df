"""Webhook acknowledgement schemas."""
from pydantic import BaseModel


class WebhookAck(BaseModel):
    """Returned to Stripe once an event is verified and routed."""
    received: bool = True
    type: str


class WebhookError(BaseModel):
    success: bool = False
    message: str
