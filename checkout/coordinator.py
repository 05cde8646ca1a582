# ============================================
# COORDINADOR DE LIBERACIÓN
# ============================================
# Cada reserva de la sesión termina exactamente una vez: liberada o
# consumida por una compra. Todas las rutas de salida (cancelar, expirar,
# cerrar pestaña, desmontar, compra exitosa) convergen en finalize(reason),
# protegido por una bandera de un solo uso.

import enum
import threading

from .errors import ApiError
from .logging_config import get_logger

logger = get_logger(__name__)


class FinalizeReason(str, enum.Enum):
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    UNLOAD = "unload"
    TEARDOWN = "teardown"
    PURCHASED = "purchased"


def release_reservations(client, reservas, reason):
    """Libera cada reserva en orden, best effort.

    Un fallo liberando una reserva no impide intentar las demás; los errores
    se registran y nunca se propagan. Devuelve los ids que el servidor liberó.
    """
    released = []
    for reserva in reservas:
        try:
            freed = client.liberar_reserva(reserva.id)
            if freed:
                released.append(reserva.id)
            logger.info(
                "Reserva liberada",
                event_type="reservation_released",
                reserva_id=reserva.id,
                reason=reason,
                freed=freed,
            )
        except ApiError as exc:
            logger.error(
                "Error liberando reserva",
                event_type="reservation_release_failed",
                reserva_id=reserva.id,
                status=exc.status_code,
                error=exc.message,
            )
    return released


class ReleaseCoordinator:
    def __init__(self, client, session):
        self._client = client
        self._session = session
        self._lock = threading.Lock()
        self._reason = None
        self._settled = threading.Event()
        self._released = []
        self._pending = []

    @property
    def finalized(self):
        return self._reason is not None

    @property
    def reason(self):
        return self._reason

    @property
    def released(self):
        return list(self._released)

    def wait_settled(self, timeout=None):
        return self._settled.wait(timeout)

    def mark_consumed(self, reserva):
        """Una línea de compra consumió ``reserva``; no se liberará nunca."""
        with self._lock:
            self._session.mark_consumed(reserva)

    def claim(self, reason):
        """Fija el motivo de cierre si nadie lo hizo antes; devuelve si lo fijó.

        No hace llamadas de red: el controlador la invoca con su propio lock
        tomado para que ninguna compra arranque sobre una sesión que se cierra.
        """
        with self._lock:
            if self._reason is not None:
                logger.info(
                    "Sesión ya finalizada",
                    event_type="finalize_skipped",
                    reason=reason.value,
                    finalized_by=self._reason.value,
                )
                return False
            self._reason = reason
            self._pending = self._session.pending()
            return True

    def dispatch(self):
        """Ejecuta las liberaciones del motivo ya reclamado."""
        reason, pending = self._reason, self._pending
        try:
            if reason is FinalizeReason.PURCHASED:
                logger.info(
                    "Compra completada, reservas consumidas",
                    event_type="session_finalized",
                    reason=reason.value,
                    unconsumed=len(pending),
                )
            else:
                self._released = release_reservations(self._client, pending, reason.value)
                logger.info(
                    "Sesión finalizada",
                    event_type="session_finalized",
                    reason=reason.value,
                    attempted=len(pending),
                    released=len(self._released),
                )
        finally:
            self._settled.set()

    def finalize(self, reason):
        """Cierra la sesión. Solo la primera llamada actúa; devuelve si actuó."""
        if not self.claim(reason):
            return False
        self.dispatch()
        return True
