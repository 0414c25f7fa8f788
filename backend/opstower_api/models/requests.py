"""API request models."""

from decimal import Decimal
from typing import Optional

from pydantic import Field

from opstower_shared.models import Provider, UserType
from opstower_api.models.base import CamelModel


class UnifiedPaymentRequest(CamelModel):
    amount: Decimal
    currency: Optional[str] = None
    description: str = ""
    user_id: str = ""
    user_type: UserType = UserType.PASSENGER
    customer_name: str = ""
    customer_email: str = ""
    customer_phone: Optional[str] = None
    booking_id: Optional[str] = None
    preferred_provider: Optional[Provider] = None
    success_url: str = ""
    failure_url: str = ""
    metadata: dict = Field(default_factory=dict)


class UnifiedRefundRequest(CamelModel):
    transaction_id: str
    amount: Optional[Decimal] = None
    reason: str = ""
    requested_by: str = ""
    metadata: dict = Field(default_factory=dict)


class RejectRefundRequest(CamelModel):
    reason: str = ""
