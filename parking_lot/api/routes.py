"""
API routes for the parking lot backend.
"""
from typing import Any, Dict, List

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.ext.asyncio import AsyncSession

from parking_lot.api.auth import create_access_token, get_current_user
from parking_lot.api.dependencies import (
    get_car_service,
    get_health_check,
    get_payment_service,
    get_reservation_manager,
    get_spot_service,
    get_user_service,
)
from parking_lot.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    PaymentValidationError,
)
from parking_lot.core.payment_service import (
    CHARGE_NOT_FOUND,
    INSUFFICIENT_BALANCE,
    SUCCESS,
    TRANSACTION_NOT_FOUND,
    PaymentService,
)
from parking_lot.core.records import CarService, ParkingSpotService, UserService
from parking_lot.core.reservations import ReservationManager
from parking_lot.database.connection import get_db
from parking_lot.database.models import User
from parking_lot.monitoring.health import HealthCheck

from .schemas import (
    BalanceResponse,
    CarCreateRequest,
    CarResponse,
    MessageResponse,
    ParkingPaymentRequest,
    PaymentIntentRequest,
    PaymentIntentResponse,
    PaymentOperationResponse,
    PaymentResultResponse,
    RegisterRequest,
    ReservationCreateRequest,
    ReservationResponse,
    SpotCreateRequest,
    SpotResponse,
    SpotStatusRequest,
    TokenRequest,
    TokenResponse,
    TransactionHistoryResponse,
    TransactionResponse,
    UserResponse,
)

logger = structlog.get_logger(__name__)

# Create routers
auth_router = APIRouter(prefix="/auth", tags=["auth"])
car_router = APIRouter(prefix="/cars", tags=["cars"])
spot_router = APIRouter(prefix="/spots", tags=["spots"])
reservation_router = APIRouter(prefix="/reservations", tags=["reservations"])
payment_router = APIRouter(prefix="/payments", tags=["payments"])
monitoring_router = APIRouter(tags=["monitoring"])

REFUND_STATUSES = {"succeeded", "pending", "requires_action", "failed", "canceled"}


# Auth


@auth_router.post(
    "/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a user",
)
async def register(
    request: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    users: UserService = Depends(get_user_service),
) -> Any:
    return await users.create_user(request.email, request.username, request.password, db)


@auth_router.post("/token", response_model=TokenResponse, summary="Obtain an access token")
async def issue_token(
    request: TokenRequest,
    db: AsyncSession = Depends(get_db),
    users: UserService = Depends(get_user_service),
) -> Dict[str, Any]:
    user = await users.authenticate(request.email, request.password, db)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password"
        )
    return create_access_token(user.email)


@auth_router.get("/me", response_model=UserResponse, summary="Current user")
async def me(user: User = Depends(get_current_user)) -> Any:
    return user


# Cars


@car_router.get("", response_model=List[CarResponse], summary="List all cars")
async def list_cars(
    _user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cars: CarService = Depends(get_car_service),
) -> Any:
    return await cars.list_cars(db)


@car_router.get("/mine", response_model=List[CarResponse], summary="List own cars")
async def list_own_cars(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cars: CarService = Depends(get_car_service),
) -> Any:
    return await cars.list_user_cars(user.email, db)


@car_router.post(
    "",
    response_model=CarResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a car",
)
async def add_car(
    request: CarCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cars: CarService = Depends(get_car_service),
) -> Any:
    return await cars.add_car(
        user, request.plate, db, brand=request.brand, model=request.model, color=request.color
    )


@car_router.delete("/{plate}", response_model=MessageResponse, summary="Remove a car")
async def delete_car(
    plate: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    cars: CarService = Depends(get_car_service),
) -> Dict[str, str]:
    await cars.delete_car(user, plate, db)
    return {"message": "Car deleted successfully"}


# Parking spots


@spot_router.get("", response_model=List[SpotResponse], summary="List parking spots")
async def list_spots(
    _user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    spots: ParkingSpotService = Depends(get_spot_service),
) -> Any:
    return await spots.list_spots(db)


@spot_router.post(
    "",
    response_model=SpotResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a parking spot",
)
async def create_spot(
    request: SpotCreateRequest,
    _user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    spots: ParkingSpotService = Depends(get_spot_service),
) -> Any:
    return await spots.create_spot(
        request.name,
        db,
        location=request.location,
        price_per_hour=request.price_per_hour,
        status=request.status,
    )


@spot_router.get("/{spot_id}", response_model=SpotResponse, summary="Get a parking spot")
async def get_spot(
    spot_id: int,
    _user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    spots: ParkingSpotService = Depends(get_spot_service),
) -> Any:
    spot = await spots.get_spot(spot_id, db)
    if spot is None:
        raise NotFoundError("Spot not found")
    return spot


@spot_router.patch("/{spot_id}", response_model=SpotResponse, summary="Change spot status")
async def set_spot_status(
    spot_id: int,
    request: SpotStatusRequest,
    _user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    spots: ParkingSpotService = Depends(get_spot_service),
) -> Any:
    return await spots.set_spot_status(spot_id, request.status, db)


@spot_router.get(
    "/{spot_id}/reservation",
    response_model=ReservationResponse | None,
    summary="Current or next reservation of a spot",
)
async def get_spot_reservation(
    spot_id: int,
    _user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    reservations: ReservationManager = Depends(get_reservation_manager),
) -> Any:
    return await reservations.get_spot_reservation(spot_id, db)


# Reservations


@reservation_router.get("", response_model=List[ReservationResponse], summary="List reservations")
async def list_reservations(
    _user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    reservations: ReservationManager = Depends(get_reservation_manager),
) -> Any:
    return await reservations.list_reservations(db)


@reservation_router.get(
    "/mine", response_model=List[ReservationResponse], summary="List own reservations"
)
async def list_own_reservations(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    reservations: ReservationManager = Depends(get_reservation_manager),
) -> Any:
    return await reservations.list_user_reservations(user.email, db)


@reservation_router.get(
    "/mine/active",
    response_model=List[ReservationResponse],
    summary="List own active reservations",
)
async def list_own_active_reservations(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    reservations: ReservationManager = Depends(get_reservation_manager),
) -> Any:
    return await reservations.list_active_user_reservations(user.email, db)


@reservation_router.post(
    "",
    response_model=ReservationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Reserve a parking spot",
)
async def create_reservation(
    request: ReservationCreateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    reservations: ReservationManager = Depends(get_reservation_manager),
) -> Any:
    logger.info(
        "api_create_reservation_request",
        spot_id=request.spot_id,
        car_plate=request.car_plate,
        user=user.email,
    )
    return await reservations.create_reservation(
        user,
        request.spot_id,
        request.start_time,
        request.end_time,
        request.cost,
        request.car_plate,
        db,
    )


@reservation_router.delete(
    "/{reservation_id}", response_model=MessageResponse, summary="Cancel a reservation"
)
async def delete_reservation(
    reservation_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    reservations: ReservationManager = Depends(get_reservation_manager),
) -> Dict[str, str]:
    await reservations.delete_reservation(user, reservation_id, db)
    return {"message": "Reservation deleted successfully"}


# Payments


@payment_router.post(
    "/intents",
    response_model=PaymentIntentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a card top-up",
)
async def create_payment_intent(
    request: PaymentIntentRequest,
    user: User = Depends(get_current_user),
    payments: PaymentService = Depends(get_payment_service),
) -> Dict[str, str]:
    logger.info("api_create_payment_intent_request", user=user.email, amount=str(request.amount))
    return await payments.create_payment_intent(user.email, request.amount)


@payment_router.post(
    "/intents/{payment_intent_id}/result",
    response_model=PaymentResultResponse,
    summary="Resolve a payment intent",
    description="Credits the balance when the intent succeeded; returns the intent status.",
)
async def handle_payment_result(
    payment_intent_id: str,
    _user: User = Depends(get_current_user),
    payments: PaymentService = Depends(get_payment_service),
) -> Dict[str, str]:
    payment_status = await payments.handle_payment_result(payment_intent_id)
    return {"payment_intent_id": payment_intent_id, "status": payment_status}


@payment_router.get("/balance", response_model=BalanceResponse, summary="Current balance")
async def get_balance(
    user: User = Depends(get_current_user),
    payments: PaymentService = Depends(get_payment_service),
) -> Dict[str, Any]:
    balance = await payments.retrieve_customer_balance(user.email)
    return {"email": user.email, "balance": balance, "currency": payments.currency}


@payment_router.get(
    "/transactions",
    response_model=TransactionHistoryResponse,
    summary="Transaction history, newest first",
)
async def get_transactions(
    user: User = Depends(get_current_user),
    payments: PaymentService = Depends(get_payment_service),
) -> Dict[str, Any]:
    records = await payments.get_transactions_history(user.email)
    return {
        "email": user.email,
        "transactions": [TransactionResponse.model_validate(record) for record in records],
    }


@payment_router.post(
    "/parking",
    response_model=PaymentOperationResponse,
    summary="Pay for a parking spot from the balance",
)
async def pay_for_parking(
    request: ParkingPaymentRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    payments: PaymentService = Depends(get_payment_service),
    reservations: ReservationManager = Depends(get_reservation_manager),
) -> Dict[str, Any]:
    amount = request.amount
    reference = None
    if request.reservation_id is not None:
        reservation = await reservations.get_reservation(request.reservation_id, db)
        if reservation is None:
            raise NotFoundError("Reservation not found")
        if reservation.car.owner_email != user.email:
            raise AuthorizationError("You are not authorized to pay for this reservation")
        if amount is not None and amount != reservation.cost:
            raise PaymentValidationError(
                f"Amount must match the reservation cost of {reservation.cost}."
            )
        reference = f"reservation:{reservation.id}"
        amount = reservation.cost

    result = await payments.pay_for_parking_spot(user.email, amount, reference=reference)
    if result == INSUFFICIENT_BALANCE:
        raise HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=result)
    return {"result": result, "details": {"amount": str(amount), "reference": reference}}


@payment_router.post(
    "/charges/{charge_id}/refund",
    response_model=PaymentOperationResponse,
    summary="Refund a card payment",
)
async def refund_charge(
    charge_id: str,
    user: User = Depends(get_current_user),
    payments: PaymentService = Depends(get_payment_service),
) -> Dict[str, Any]:
    result = await payments.create_card_payment_refund(charge_id, user.email)
    if result == CHARGE_NOT_FOUND:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=result)
    if result not in REFUND_STATUSES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result)
    return {"result": result, "details": {"charge_id": charge_id}}


@payment_router.post(
    "/balance-transactions/{transaction_id}/refund",
    response_model=PaymentOperationResponse,
    summary="Reverse a balance transaction",
)
async def refund_balance_transaction(
    transaction_id: str,
    user: User = Depends(get_current_user),
    payments: PaymentService = Depends(get_payment_service),
) -> Dict[str, Any]:
    result = await payments.refund_customer_balance_transaction(
        transaction_id, user.email, allow_parking_payments=False
    )
    if result == TRANSACTION_NOT_FOUND:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=result)
    if result != SUCCESS:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result)
    return {"result": result, "details": {"transaction_id": transaction_id}}


# Monitoring


@monitoring_router.get("/health", summary="Health check")
async def health(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await health_check.check_all()


@monitoring_router.get("/health/live", summary="Liveness probe")
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    return await health_check.liveness()


@monitoring_router.get("/health/ready", summary="Readiness probe")
async def readiness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    result = await health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get("/metrics", include_in_schema=False)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
