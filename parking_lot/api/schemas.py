"""
Pydantic schemas for API request/response models.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class RegisterRequest(BaseModel):
    """Request schema for registering a user."""

    email: str = Field(..., min_length=3, max_length=255, description="User email")
    username: str = Field(..., min_length=1, max_length=100, description="Display name")
    password: str = Field(..., min_length=8, max_length=72, description="Password")


class TokenRequest(BaseModel):
    """Request schema for obtaining an access token."""

    email: str = Field(..., description="User email")
    password: str = Field(..., description="Password")


class TokenResponse(BaseModel):
    """Response schema for access token issuance."""

    access_token: str = Field(..., description="Signed bearer token")
    token_type: str = Field(default="bearer", description="Token type")
    expires_at: int = Field(..., description="Expiry (unix timestamp)")


class UserResponse(BaseModel):
    """Response schema for a user."""

    model_config = ConfigDict(from_attributes=True)

    email: str
    username: str
    created_at: datetime


class CarCreateRequest(BaseModel):
    """Request schema for registering a car."""

    plate: str = Field(..., min_length=1, max_length=20, description="License plate")
    brand: Optional[str] = Field(default=None, max_length=100)
    model: Optional[str] = Field(default=None, max_length=100)
    color: Optional[str] = Field(default=None, max_length=50)

    model_config = {
        "json_schema_extra": {
            "examples": [{"plate": "CJ 12 ABC", "brand": "Dacia", "model": "Logan", "color": "blue"}]
        }
    }


class CarResponse(BaseModel):
    """Response schema for a car."""

    model_config = ConfigDict(from_attributes=True)

    plate: str
    brand: Optional[str] = None
    model: Optional[str] = None
    color: Optional[str] = None
    owner_email: str


class SpotCreateRequest(BaseModel):
    """Request schema for creating a parking spot."""

    name: str = Field(..., min_length=1, max_length=100)
    location: Optional[str] = Field(default=None, max_length=255)
    price_per_hour: Decimal = Field(default=Decimal("0"), ge=0)
    status: Literal["available", "unavailable"] = "available"


class SpotStatusRequest(BaseModel):
    """Request schema for changing a spot's status."""

    status: Literal["available", "unavailable"]


class SpotResponse(BaseModel):
    """Response schema for a parking spot."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    location: Optional[str] = None
    price_per_hour: Decimal
    status: str


class ReservationCreateRequest(BaseModel):
    """Request schema for reserving a spot."""

    spot_id: int = Field(..., description="Spot to reserve")
    car_plate: str = Field(..., description="Plate of one of the caller's cars")
    start_time: datetime = Field(..., description="Window start (ISO 8601)")
    end_time: datetime = Field(..., description="Window end (ISO 8601)")
    cost: Decimal = Field(..., ge=0, description="Reservation cost")

    @model_validator(mode="after")
    def validate_window(self) -> "ReservationCreateRequest":
        """Validate that the window is not empty."""
        if (self.start_time.tzinfo is None) != (self.end_time.tzinfo is None):
            raise ValueError("start_time and end_time must both carry a timezone or neither")
        if self.start_time >= self.end_time:
            raise ValueError("end_time must be after start_time")
        return self

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "spot_id": 1,
                    "car_plate": "CJ12ABC",
                    "start_time": "2025-01-06T10:00:00Z",
                    "end_time": "2025-01-06T12:00:00Z",
                    "cost": "10.00",
                }
            ]
        }
    }


class ReservationResponse(BaseModel):
    """Response schema for a reservation."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    car_plate: str
    spot_id: int
    start_time: datetime
    end_time: datetime
    cost: Decimal
    status: str
    created_at: datetime


class MessageResponse(BaseModel):
    """Plain message response."""

    message: str


class PaymentIntentRequest(BaseModel):
    """Request schema for starting a card top-up."""

    amount: Decimal = Field(..., description="Amount in major currency units (minimum 2)")

    model_config = {"json_schema_extra": {"examples": [{"amount": "50.00"}]}}


class PaymentIntentResponse(BaseModel):
    """Response schema for a created payment intent."""

    client_secret: str = Field(..., description="Client secret for confirming the payment")
    payment_intent_id: str = Field(..., description="Stripe PaymentIntent ID")


class PaymentResultResponse(BaseModel):
    """Response schema for a resolved payment intent."""

    payment_intent_id: str
    status: str = Field(..., description="PaymentIntent status or 'payment-error'")


class BalanceResponse(BaseModel):
    """Response schema for a customer balance."""

    email: str
    balance: Decimal = Field(..., description="Balance in major currency units")
    currency: str


class TransactionResponse(BaseModel):
    """One entry of the transaction history."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    object: str = Field(..., description="customer_balance_transaction or charge")
    amount: Decimal
    currency: str
    description: Optional[str] = None
    created: datetime
    status: Optional[str] = None


class TransactionHistoryResponse(BaseModel):
    """Response schema for transaction history, newest first."""

    email: str
    transactions: List[TransactionResponse]


class ParkingPaymentRequest(BaseModel):
    """Request schema for paying for a parking spot from the balance."""

    amount: Optional[Decimal] = Field(
        default=None,
        gt=0,
        description="Amount to debit; must equal the reservation cost when one is given",
    )
    reservation_id: Optional[int] = Field(
        default=None, description="Reservation being paid for"
    )

    @field_validator("amount")
    @classmethod
    def validate_precision(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        """Reject amounts finer than one minor unit."""
        if v is not None and v != v.quantize(Decimal("0.01")):
            raise ValueError("Amount cannot have more than two decimal places")
        return v

    @model_validator(mode="after")
    def validate_target(self) -> "ParkingPaymentRequest":
        if self.amount is None and self.reservation_id is None:
            raise ValueError("Either amount or reservation_id is required")
        return self


class PaymentOperationResponse(BaseModel):
    """Result of a balance payment or refund."""

    result: str = Field(..., description="Operation result")
    details: Optional[Dict[str, Any]] = None
