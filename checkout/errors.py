"""Errores del ciclo de vida del checkout."""

# Mensajes genéricos cuando el servidor no envía uno propio
DEFAULT_ACQUISITION_MESSAGE = (
    "No se pudo reservar las entradas. Por favor intenta nuevamente."
)
DEFAULT_PURCHASE_MESSAGE = (
    "No se pudo procesar el pago. Por favor intenta nuevamente."
)
EXPIRED_NOTICE = "Tu reserva ha expirado. Las entradas han sido liberadas."


class CheckoutError(Exception):
    def __init__(self, message, status_code=400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ValidationError(CheckoutError):
    """Datos del formulario inválidos; se detecta antes de cualquier llamada."""

    def __init__(self, message):
        super().__init__(message, 400)


class ApiError(CheckoutError):
    """Respuesta no-2xx del backend o fallo de red/timeout (status 503)."""

    def __init__(self, message, status_code=503):
        super().__init__(message, status_code)


class AcquisitionError(CheckoutError):
    """Falló la creación de una reserva del lote; las anteriores ya se liberaron."""

    def __init__(self, message, status_code=409, failed_index=None):
        super().__init__(message, status_code)
        self.failed_index = failed_index


class PurchaseError(CheckoutError):
    """El backend rechazó una línea de compra.

    Lleva las claves de idempotencia usadas para que el llamador pueda
    reintentar exactamente el mismo intento si así lo decide.
    """

    def __init__(self, message, status_code=402, idempotency_keys=None):
        super().__init__(message, status_code)
        self.idempotency_keys = dict(idempotency_keys or {})


class ConfirmationRequiredError(CheckoutError):
    def __init__(self, message="Confirma la cancelación para liberar las entradas."):
        super().__init__(message, 409)


class NoActiveCheckoutError(CheckoutError):
    def __init__(self, message="No hay datos de compra. Selecciona tickets primero."):
        super().__init__(message, 404)


class CheckoutInProgressError(CheckoutError):
    def __init__(self, message="Ya hay una compra en curso en esta pestaña."):
        super().__init__(message, 409)


class CheckoutExpiredError(CheckoutError):
    def __init__(self, message=EXPIRED_NOTICE):
        super().__init__(message, 410)
