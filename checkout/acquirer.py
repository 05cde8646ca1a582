"""
Adquisición de reservas: una por línea de la selección, en orden.

Si la línea k falla se liberan las reservas 1..k-1 del mismo intento
(transacción compensatoria) y se propaga el error de la línea k. Sin
reintentos.
"""

from typing import List

from .config import MAX_CANTIDAD
from .coordinator import release_reservations
from .errors import AcquisitionError, ApiError, ValidationError
from .logging_config import get_logger
from .models import LineItem, Reservation

logger = get_logger(__name__)

ROLLBACK_REASON = "rollback"


def validate_selection(seleccion: List[LineItem]):
    if not seleccion:
        raise ValidationError("Selecciona al menos una entrada.")
    for item in seleccion:
        if not 1 <= item.cantidad <= MAX_CANTIDAD:
            raise ValidationError(
                f"La cantidad para {item.nombre or item.tipo_entrada_id} "
                f"debe estar entre 1 y {MAX_CANTIDAD}."
            )


class ReservationAcquirer:
    def __init__(self, client):
        self._client = client

    def acquire(self, seleccion: List[LineItem], usuario_id) -> List[Reservation]:
        validate_selection(seleccion)

        reservas: List[Reservation] = []
        for index, item in enumerate(seleccion):
            try:
                reserva = self._client.crear_reserva(
                    item.tipo_entrada_id, usuario_id, item.cantidad
                )
            except ApiError as exc:
                logger.error(
                    "Error creando reserva",
                    event_type="reservation_create_failed",
                    tipo_entrada_id=item.tipo_entrada_id,
                    index=index,
                    status=exc.status_code,
                    error=exc.message,
                )
                if reservas:
                    logger.info(
                        "Liberando reservas ya creadas",
                        event_type="acquisition_rollback",
                        count=len(reservas),
                    )
                    release_reservations(self._client, reservas, ROLLBACK_REASON)
                raise AcquisitionError(
                    exc.message, status_code=exc.status_code, failed_index=index
                ) from exc

            reservas.append(reserva)
            logger.info(
                "Reserva creada",
                event_type="reservation_created",
                reserva_id=reserva.id,
                tipo_entrada_id=item.tipo_entrada_id,
                cantidad=item.cantidad,
            )

        return reservas
