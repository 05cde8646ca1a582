"""
Almacenamiento del checkout con alcance de pestaña.

Tres claves conocidas:

- ``checkout-data``: la ``CheckoutSession`` serializada.
- ``checkout-expiration``: fecha límite absoluta en epoch ms, como texto.
- ``checkout-reserva-id``: id del lote (primera reserva) que fijó esa fecha.

Un único escritor (el controlador activo de la pestaña); el temporizador solo
lee. Los valores guardados son siempre texto.
"""

import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional

from .logging_config import get_logger
from .models import CheckoutSession, ExpirationWindow

logger = get_logger(__name__)

CHECKOUT_DATA_KEY = "checkout-data"
CHECKOUT_EXPIRATION_KEY = "checkout-expiration"
CHECKOUT_RESERVA_ID_KEY = "checkout-reserva-id"

CHECKOUT_KEYS = (CHECKOUT_DATA_KEY, CHECKOUT_EXPIRATION_KEY, CHECKOUT_RESERVA_ID_KEY)


class SessionStore(ABC):
    """Almacén clave/valor de una pestaña."""

    @abstractmethod
    def load(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def save(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def clear(self, key: str) -> None:
        ...

    def load_session(self) -> Optional[CheckoutSession]:
        raw = self.load(CHECKOUT_DATA_KEY)
        if not raw:
            return None
        try:
            return CheckoutSession.from_json(json.loads(raw))
        except (ValueError, KeyError, TypeError, AttributeError, ArithmeticError):
            # Igual que una fecha límite ilegible: se trata como ausente
            logger.warning("Sesión guardada ilegible", event_type="session_corrupt")
            return None

    def save_session(self, session: CheckoutSession) -> None:
        self.save(CHECKOUT_DATA_KEY, json.dumps(session.to_json()))

    def load_expiration(self) -> Optional[int]:
        raw = self.load(CHECKOUT_EXPIRATION_KEY)
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    def load_window(self) -> Optional[ExpirationWindow]:
        expires_at_ms = self.load_expiration()
        batch_id = self.load(CHECKOUT_RESERVA_ID_KEY)
        if expires_at_ms is None or batch_id is None:
            return None
        return ExpirationWindow(expires_at_ms=expires_at_ms, batch_id=batch_id)

    def save_window(self, window: ExpirationWindow) -> None:
        self.save(CHECKOUT_EXPIRATION_KEY, str(window.expires_at_ms))
        self.save(CHECKOUT_RESERVA_ID_KEY, window.batch_id)

    def clear_window(self) -> None:
        self.clear(CHECKOUT_EXPIRATION_KEY)
        self.clear(CHECKOUT_RESERVA_ID_KEY)

    def clear_checkout(self) -> None:
        for key in CHECKOUT_KEYS:
            self.clear(key)


class InMemorySessionStore(SessionStore):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._lock = threading.Lock()
        self._data: Dict[str, str] = dict(initial or {})

    def load(self, key):
        with self._lock:
            return self._data.get(key)

    def save(self, key, value):
        with self._lock:
            self._data[key] = value

    def clear(self, key):
        with self._lock:
            self._data.pop(key, None)

    def snapshot(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._data)


class JsonFileSessionStore(SessionStore):
    """Un archivo JSON por pestaña; sobrevive a un reinicio del proceso.

    Cada escritura reemplaza el archivo completo con ``os.replace`` para que
    un lector nunca vea un archivo a medio escribir.
    """

    def __init__(self, path):
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self):
        return self._path

    def _read(self) -> Dict[str, str]:
        try:
            with open(self._path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return {}
        except ValueError:
            logger.warning("Archivo de pestaña ilegible", event_type="store_corrupt", path=self._path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, str]) -> None:
        directory = os.path.dirname(self._path) or "."
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh)
            os.replace(tmp_path, self._path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def load(self, key):
        with self._lock:
            return self._read().get(key)

    def save(self, key, value):
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def clear(self, key):
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)
