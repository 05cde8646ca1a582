"""Ciclo de vida de reservas temporales en el checkout."""

from .acquirer import ReservationAcquirer
from .api_client import ReservasClient
from .controller import CheckoutController, format_time_left
from .coordinator import FinalizeReason, ReleaseCoordinator, release_reservations
from .errors import (
    AcquisitionError,
    ApiError,
    CheckoutError,
    CheckoutExpiredError,
    CheckoutInProgressError,
    ConfirmationRequiredError,
    NoActiveCheckoutError,
    PurchaseError,
    ValidationError,
)
from .models import CheckoutSession, ExpirationWindow, LineItem, PurchaseResult, Reservation
from .payment import PaymentMethod
from .store import InMemorySessionStore, JsonFileSessionStore, SessionStore
from .timer import ExpirationTimer, Ticker, TimerState

__all__ = [
    "AcquisitionError",
    "ApiError",
    "CheckoutController",
    "CheckoutError",
    "CheckoutExpiredError",
    "CheckoutInProgressError",
    "CheckoutSession",
    "ConfirmationRequiredError",
    "ExpirationTimer",
    "ExpirationWindow",
    "FinalizeReason",
    "InMemorySessionStore",
    "JsonFileSessionStore",
    "LineItem",
    "NoActiveCheckoutError",
    "PaymentMethod",
    "PurchaseError",
    "PurchaseResult",
    "ReleaseCoordinator",
    "Reservation",
    "ReservasClient",
    "ReservationAcquirer",
    "SessionStore",
    "Ticker",
    "TimerState",
    "ValidationError",
    "format_time_left",
    "release_reservations",
]
