# ============================================
# CLIENTE DEL BACKEND DE RESERVAS
# ============================================
# Contratos consumidos:
#   POST /api/reservas/crear                    -> crear reserva temporal
#   PUT  /api/reservas/{id}/liberar             -> liberar (sin consumir)
#   PUT  /api/reservas/{id}/confirmar           -> confirmar tras pago
#   GET  /api/reservas/usuario/{id}/activas     -> reservas activas del usuario
#   POST /api/orchestration/purchase-ticket     -> compra de una línea
#
# Toda llamada lleva timeout. Una respuesta no-2xx o un fallo de red se
# convierte en ApiError; el llamador decide si se muestra o solo se registra.

import requests

from .config import REQUEST_TIMEOUT, RESERVAS_URL
from .errors import ApiError, DEFAULT_ACQUISITION_MESSAGE, DEFAULT_PURCHASE_MESSAGE
from .logging_config import get_logger
from .models import Reservation

logger = get_logger(__name__)

# Respuestas de liberación que significan "ya liberada o consumida"
_ALREADY_FINAL_STATUS = {404, 409}


def _server_message(response, keys, default):
    """Extrae el mensaje de error del cuerpo, en el orden de ``keys``."""
    try:
        body = response.json()
    except ValueError:
        text = (response.text or "").strip()
        return text or default
    if isinstance(body, dict):
        for key in keys:
            value = body.get(key)
            if value:
                return str(value)
    elif isinstance(body, str) and body:
        return body
    return default


class ReservasClient:
    def __init__(self, base_url=RESERVAS_URL, token=None, timeout=REQUEST_TIMEOUT,
                 session=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http = session or requests.Session()
        self._http.headers.update({"Content-Type": "application/json"})
        self.set_token(token)

    def set_token(self, token):
        """Token bearer de las llamadas siguientes; None no cambia nada."""
        if token:
            self._http.headers["Authorization"] = f"Bearer {token}"

    def _request(self, method, path, default_message, message_keys, **kwargs):
        url = f"{self.base_url}{path}"
        try:
            response = self._http.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout:
            raise ApiError("Tiempo de espera agotado contactando al servidor.", 504)
        except requests.RequestException as exc:
            raise ApiError(f"Servidor no disponible: {exc}.", 503)

        if response.status_code >= 400:
            raise ApiError(
                _server_message(response, message_keys, default_message),
                response.status_code,
            )
        return response

    def crear_reserva(self, tipo_entrada_id, usuario_id, cantidad) -> Reservation:
        response = self._request(
            "POST",
            "/api/reservas/crear",
            DEFAULT_ACQUISITION_MESSAGE,
            ("message", "error"),
            json={
                "tipoEntradaId": tipo_entrada_id,
                "usuarioId": usuario_id,
                "cantidad": cantidad,
            },
        )
        return Reservation.from_json(response.json())

    def liberar_reserva(self, reserva_id) -> bool:
        """Libera una reserva. Devuelve False si ya estaba liberada o consumida."""
        try:
            response = self._request(
                "PUT",
                f"/api/reservas/{reserva_id}/liberar",
                "No se pudo liberar la reserva.",
                ("message", "error"),
            )
        except ApiError as exc:
            if exc.status_code in _ALREADY_FINAL_STATUS:
                logger.info(
                    "Reserva ya finalizada",
                    event_type="release_already_final",
                    reserva_id=reserva_id,
                    status=exc.status_code,
                )
                return False
            raise

        # El backend responde 200 con el estado actual aunque ya no estuviera
        # ACTIVA; una reserva CONFIRMADA no se libera.
        try:
            estado = (response.json() or {}).get("estado")
        except (ValueError, AttributeError):
            estado = None
        return estado != "CONFIRMADA"

    def confirmar_reserva(self, reserva_id) -> Reservation:
        response = self._request(
            "PUT",
            f"/api/reservas/{reserva_id}/confirmar",
            "No se pudo confirmar la reserva.",
            ("message", "error"),
        )
        return Reservation.from_json(response.json())

    def reservas_activas(self, usuario_id):
        response = self._request(
            "GET",
            f"/api/reservas/usuario/{usuario_id}/activas",
            "No se pudieron obtener las reservas activas.",
            ("message", "error"),
        )
        return [Reservation.from_json(item) for item in response.json()]

    def comprar_entrada(self, usuario_id, tipo_entrada_id, cantidad, reserva_id,
                        idempotency_key, payment_method):
        response = self._request(
            "POST",
            "/api/orchestration/purchase-ticket",
            DEFAULT_PURCHASE_MESSAGE,
            ("error", "message"),
            json={
                "usuarioId": usuario_id,
                "tipoEntradaId": tipo_entrada_id,
                "cantidad": cantidad,
                "reservaId": reserva_id,
                "idempotencyKey": idempotency_key,
                "paymentMethod": payment_method,
            },
            headers={"X-User-ID": str(usuario_id)},
        )
        try:
            return response.json()
        except ValueError:
            return {}
