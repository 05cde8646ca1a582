"""
Controlador del ciclo de vida de la reserva en el checkout.

Orquesta las tres piezas:

1. ``ReservationAcquirer`` crea las reservas del lote (con rollback).
2. ``ExpirationTimer`` vigila la fecha límite persistida.
3. ``ReleaseCoordinator`` garantiza que cada reserva termine una sola vez.

Cada ruta de salida (``cancel`` con confirmación, expiración del
temporizador, ``on_unload``, ``teardown`` y la compra completada) reclama el
cierre con ``_claim(reason)`` bajo el lock del controlador y después ejecuta
las liberaciones fuera de él con ``_dispatch``. Una compra solo arranca si
nadie reclamó el cierre antes.
"""

import threading
import time

from .acquirer import ReservationAcquirer
from .config import HOLD_SECONDS, TICK_SECONDS
from .coordinator import FinalizeReason, ReleaseCoordinator
from .errors import (
    ApiError,
    CheckoutExpiredError,
    CheckoutInProgressError,
    ConfirmationRequiredError,
    EXPIRED_NOTICE,
    NoActiveCheckoutError,
    PurchaseError,
    ValidationError,
)
from .logging_config import get_logger
from .models import CheckoutSession, PurchaseResult
from .payment import PaymentMethod, new_idempotency_key
from .timer import ExpirationTimer

logger = get_logger(__name__)

# Espera máxima para que otra ruta termine sus liberaciones
SETTLE_TIMEOUT = 30


def format_time_left(seconds):
    """Formato M:SS para el contador."""
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"


class CheckoutController:
    def __init__(self, client, store, clock=time.time, hold_seconds=HOLD_SECONDS,
                 tick_seconds=TICK_SECONDS, autostart_timer=True):
        self._client = client
        self._store = store
        self._clock = clock
        self._hold_seconds = hold_seconds
        self._tick_seconds = tick_seconds
        self._autostart_timer = autostart_timer
        self._acquirer = ReservationAcquirer(client)

        self._lock = threading.RLock()
        self._session = None
        self._coordinator = None
        self._timer = None
        self._outcome = None
        self._paying = False
        self._pending_reason = None

    # ------------------------------------------------------------------
    # Estado
    # ------------------------------------------------------------------

    @property
    def client(self):
        return self._client

    @property
    def session(self):
        return self._session

    @property
    def active(self):
        return self._session is not None

    @property
    def outcome(self):
        """Motivo con el que terminó la última sesión, o None."""
        return self._outcome

    @property
    def notice(self):
        if self._outcome is FinalizeReason.EXPIRED:
            return EXPIRED_NOTICE
        return None

    @property
    def time_left(self):
        timer = self._timer
        if timer is None or self._session is None:
            return 0
        return timer.time_left

    @property
    def timer_state(self):
        return self._timer.state if self._timer is not None else None

    # ------------------------------------------------------------------
    # Inicio y reanudación
    # ------------------------------------------------------------------

    def start(self, evento, seleccion, usuario_id) -> CheckoutSession:
        """Adquiere las reservas de ``seleccion`` y arma el temporizador."""
        with self._lock:
            if self.resume() is not None:
                raise CheckoutInProgressError()

            reservas = self._acquirer.acquire(seleccion, usuario_id)
            logger.info(
                "Reservas creadas exitosamente",
                event_type="acquisition_completed",
                count=len(reservas),
                usuario_id=usuario_id,
            )

            session = CheckoutSession(
                evento=dict(evento or {}),
                seleccion=list(seleccion),
                reservas=reservas,
            )
            self._store.save_session(session)
            self._activate(session)
            return session

    def resume(self):
        """Carga la sesión guardada (p. ej. tras un reinicio).

        Devuelve la sesión activa, o None si no hay ninguna o si su
        retención ya expiró (en cuyo caso se libera en el acto).
        """
        with self._lock:
            if self._session is not None:
                return self._session
            session = self._store.load_session()
            if session is None:
                return None
            if not session.reservas:
                self._store.clear_checkout()
                return None
            self._activate(session)
            return self._session

    def _activate(self, session):
        self._session = session
        self._outcome = None
        self._coordinator = ReleaseCoordinator(self._client, session)
        self._timer = ExpirationTimer(
            self._store,
            self._on_expired,
            clock=self._clock,
            hold_seconds=self._hold_seconds,
            tick_seconds=self._tick_seconds,
        )
        self._timer.arm(session.batch_id)
        # Un lote reanudado puede llegar ya vencido
        if self._timer.tick() == 0:
            return
        if self._autostart_timer:
            self._timer.start()

    # ------------------------------------------------------------------
    # Temporizador
    # ------------------------------------------------------------------

    def tick(self):
        timer = self._timer
        if timer is None:
            return 0
        return timer.tick()

    def _on_expired(self):
        self._finalize_when_idle(FinalizeReason.EXPIRED)

    def _finalize_when_idle(self, reason):
        """Finaliza ahora, o al terminar la compra en curso si la hay."""
        with self._lock:
            if self._paying:
                if self._pending_reason is None:
                    self._pending_reason = reason
                return None
            claim = self._claim(reason)
        return self._dispatch(*claim)

    # ------------------------------------------------------------------
    # Rutas de salida
    # ------------------------------------------------------------------

    def cancel(self, confirmed=False):
        """Cancelación del usuario; exige confirmación explícita."""
        if not confirmed:
            raise ConfirmationRequiredError()
        with self._lock:
            if self._session is None:
                raise NoActiveCheckoutError()
            if self._paying:
                raise CheckoutInProgressError("Ya se está procesando el pago.")
            claim = self._claim(FinalizeReason.CANCELLED)
        coordinator = self._dispatch(*claim)
        if coordinator is None:
            return self._outcome
        coordinator.wait_settled(SETTLE_TIMEOUT)
        return coordinator.reason

    def on_unload(self):
        """Cierre de pestaña: best effort, nunca lanza."""
        self._finalize_when_idle(FinalizeReason.UNLOAD)

    def teardown(self):
        """El usuario navegó a otra parte sin completar la compra."""
        self._finalize_when_idle(FinalizeReason.TEARDOWN)

    def _claim(self, reason):
        """Requiere el lock tomado. Devuelve (coordinador, temporizador, reclamado)."""
        coordinator = self._coordinator
        if coordinator is None:
            return None, None, False
        return coordinator, self._timer, coordinator.claim(reason)

    def _dispatch(self, coordinator, timer, claimed):
        if coordinator is None or not claimed:
            return coordinator

        # Fuera del lock: stop() puede esperar al hilo del temporizador
        timer.stop()
        coordinator.dispatch()
        with self._lock:
            if self._coordinator is coordinator:
                self._store.clear_checkout()
                self._session = None
                self._outcome = coordinator.reason
        return coordinator

    def discardable(self):
        """Sin sesión ni operación en curso: el controlador puede descartarse."""
        if not self._lock.acquire(blocking=False):
            return False
        try:
            return self._session is None and not self._paying
        finally:
            self._lock.release()

    # ------------------------------------------------------------------
    # Compra
    # ------------------------------------------------------------------

    def pay(self, usuario_id, payment_method, idempotency_keys=None,
            simulate_rejection=False) -> PurchaseResult:
        """Compra cada línea pendiente contra su reserva.

        ``idempotency_keys`` (id de reserva -> clave) solo se pasa para
        reintentar exactamente el mismo intento; si no, cada línea recibe una
        clave nueva en este envío.
        """
        if idempotency_keys is not None and not isinstance(idempotency_keys, dict):
            raise ValidationError("Claves de idempotencia inválidas")
        if simulate_rejection:
            payment_method = PaymentMethod.rejected_test_card(payment_method.card_holder)
        else:
            payment_method.validate()

        self.tick()

        with self._lock:
            session, coordinator = self._session, self._coordinator
            if coordinator is not None and coordinator.finalized:
                # Otra ruta de salida ya está liberando (o liberó) estas reservas
                if coordinator.reason is FinalizeReason.EXPIRED:
                    raise CheckoutExpiredError()
                raise NoActiveCheckoutError()
            if session is None:
                raise NoActiveCheckoutError()
            if self._paying:
                raise CheckoutInProgressError("Ya se está procesando el pago.")
            self._paying = True

        reuse = {str(k): v for k, v in (idempotency_keys or {}).items()}
        keys = {}
        tickets = []
        try:
            for item, reserva in zip(session.seleccion, session.reservas):
                if session.is_consumed(reserva):
                    continue
                key = reuse.get(str(reserva.id)) or new_idempotency_key()
                keys[str(reserva.id)] = key
                try:
                    ticket = self._client.comprar_entrada(
                        usuario_id,
                        item.tipo_entrada_id,
                        item.cantidad,
                        reserva.id,
                        key,
                        payment_method.to_json(),
                    )
                except ApiError as exc:
                    logger.error(
                        "Error procesando pago",
                        event_type="purchase_failed",
                        reserva_id=reserva.id,
                        status=exc.status_code,
                        error=exc.message,
                    )
                    raise PurchaseError(exc.message, exc.status_code, keys) from exc

                coordinator.mark_consumed(reserva)
                self._store.save_session(session)
                tickets.append(ticket)
                logger.info(
                    "Línea comprada",
                    event_type="purchase_line_completed",
                    reserva_id=reserva.id,
                )

            with self._lock:
                claim = self._claim(FinalizeReason.PURCHASED)
            self._dispatch(*claim)
        finally:
            with self._lock:
                self._paying = False
                pending_reason, self._pending_reason = self._pending_reason, None
                claim = self._claim(pending_reason) if pending_reason is not None else None
            if claim is not None:
                self._dispatch(*claim)

        return PurchaseResult(tickets=tickets, idempotency_keys=keys)
