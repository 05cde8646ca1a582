"""
Temporizador de expiración de la retención.

Estados: INACTIVE -> ARMED -> TICKING* -> EXPIRED, o STOPPED cuando una
cancelación, una compra exitosa o un desmontaje se adelantan. El tiempo
restante se recalcula siempre desde la fecha límite guardada en el almacén,
nunca desde un contador en memoria.
"""

import enum
import threading
import time

from .config import HOLD_SECONDS, TICK_SECONDS
from .logging_config import get_logger
from .models import ExpirationWindow
from .store import CHECKOUT_RESERVA_ID_KEY

logger = get_logger(__name__)


class TimerState(enum.Enum):
    INACTIVE = "inactive"
    ARMED = "armed"
    TICKING = "ticking"
    EXPIRED = "expired"
    STOPPED = "stopped"


class Ticker:
    """Ejecuta ``callback`` cada ``interval`` segundos en un hilo daemon."""

    def __init__(self, interval, callback, name="checkout-ticker"):
        self._interval = interval
        self._callback = callback
        self._name = name
        self._stopped = threading.Event()
        self._thread = None

    @property
    def running(self):
        return self._thread is not None and not self._stopped.is_set()

    def start(self):
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def cancel(self):
        self._stopped.set()
        thread = self._thread
        # El callback puede cancelar su propio ticker (expiración)
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self._interval * 2 + 1)

    def _run(self):
        while not self._stopped.wait(self._interval):
            try:
                self._callback()
            except Exception:
                logger.exception("Error en el tick del temporizador", event_type="tick_error")


class ExpirationTimer:
    def __init__(self, store, on_expire, clock=time.time, hold_seconds=HOLD_SECONDS,
                 tick_seconds=TICK_SECONDS):
        self._store = store
        self._on_expire = on_expire
        self._clock = clock
        self._hold_ms = int(hold_seconds * 1000)
        self._tick_seconds = tick_seconds
        self._lock = threading.Lock()
        self._state = TimerState.INACTIVE
        self._time_left = 0
        self._ticker = None

    @property
    def state(self):
        return self._state

    @property
    def time_left(self):
        return self._time_left

    def _now_ms(self):
        return int(self._clock() * 1000)

    def arm(self, batch_id) -> ExpirationWindow:
        """Fija la fecha límite del lote.

        Un lote nuevo recibe ``now + hold``; el mismo lote (recarga) reutiliza la
        fecha guardada sin extenderla.
        """
        with self._lock:
            stored_batch = self._store.load(CHECKOUT_RESERVA_ID_KEY)
            expires_at_ms = self._store.load_expiration()
            if stored_batch != batch_id:
                window = ExpirationWindow(self._now_ms() + self._hold_ms, batch_id)
                self._store.save_window(window)
                logger.info(
                    "Nueva retención",
                    event_type="hold_armed",
                    batch_id=batch_id,
                    expires_at_ms=window.expires_at_ms,
                )
            else:
                # Sin fecha guardada el primer tick la trata como expirada
                window = ExpirationWindow(expires_at_ms or 0, batch_id)
                logger.info(
                    "Retención reanudada",
                    event_type="hold_resumed",
                    batch_id=batch_id,
                    expires_at_ms=expires_at_ms,
                )
            self._time_left = window.time_left(self._now_ms())
            self._state = TimerState.ARMED
            return window

    def start(self):
        """Arranca el tick periódico en segundo plano."""
        with self._lock:
            if self._state is not TimerState.ARMED or self._ticker is not None:
                return
            self._ticker = Ticker(self._tick_seconds, self.tick)
        self._ticker.start()

    def tick(self):
        """Recalcula el tiempo restante; emite la expiración una sola vez."""
        with self._lock:
            if self._state not in (TimerState.ARMED, TimerState.TICKING):
                return 0
            expires_at_ms = self._store.load_expiration()
            if expires_at_ms is None:
                remaining = 0
            else:
                remaining = max(0, (expires_at_ms - self._now_ms()) // 1000)
            self._time_left = remaining
            if remaining > 0:
                self._state = TimerState.TICKING
                return remaining
            self._state = TimerState.EXPIRED
            ticker = self._ticker

        logger.info("Retención expirada", event_type="hold_expired")
        if ticker is not None:
            ticker.cancel()
        self._store.clear_window()
        self._on_expire()
        return 0

    def stop(self):
        """Detiene el temporizador sin emitir expiración."""
        with self._lock:
            if self._state is not TimerState.EXPIRED:
                self._state = TimerState.STOPPED
            ticker = self._ticker
        if ticker is not None:
            ticker.cancel()
