# ============================================
# SERVICIO RESERVAS - Backend simulado
# ============================================
# Implementa en memoria los contratos que consume el checkout:
#   POST /api/reservas/crear
#   PUT  /api/reservas/<id>/liberar
#   PUT  /api/reservas/<id>/confirmar
#   GET  /api/reservas/usuario/<id>/activas
#   POST /api/orchestration/purchase-ticket
# Stock por tipo de entrada protegido con un lock; cuenta cuántas veces se
# pidió liberar cada reserva para que los scripts verifiquen "una sola vez".

import threading
import time
from datetime import datetime, timedelta, timezone

from flask import Flask, jsonify, request

from checkout.logging_config import get_logger

app = Flask(__name__)
logger = get_logger("services.reservas")

# Vigencia de la reserva del lado servidor (la ventana del cliente es menor)
EXPIRACION_MINUTOS = 10
MAX_CANTIDAD = 10
MONTO_MAXIMO = 1000

_lock = threading.Lock()

TIPOS_ENTRADA = {}
RESERVAS = {}
RELEASE_CALLS = {}
PURCHASES = {}
_next_id = {"reserva": 1, "ticket": 1}

CHAOS_FLAGS = {
    "crash": False,          # crear reserva responde 503
    "fail": False,           # la compra responde 502
    "latency_seconds": 0,    # demora artificial en la compra
}

DEFAULT_TIPOS = {
    1: {"nombre": "General", "precio": 50.0, "disponible": 100},
    2: {"nombre": "VIP", "precio": 150.0, "disponible": 20},
    3: {"nombre": "Palco", "precio": 400.0, "disponible": 5},
}


def reset_state(tipos=None):
    """Restablece el estado en memoria (también lo usan los tests)."""
    with _lock:
        TIPOS_ENTRADA.clear()
        for tipo_id, tipo in (tipos or DEFAULT_TIPOS).items():
            TIPOS_ENTRADA[int(tipo_id)] = dict(tipo)
        RESERVAS.clear()
        RELEASE_CALLS.clear()
        PURCHASES.clear()
        _next_id["reserva"] = 1
        _next_id["ticket"] = 1
        for flag in ("crash", "fail"):
            CHAOS_FLAGS[flag] = False
        CHAOS_FLAGS["latency_seconds"] = 0


reset_state()


def _error(message, status=400):
    return jsonify({"status": "error", "message": message}), status


def _now():
    return datetime.now(timezone.utc)


def _reserva_json(reserva):
    if reserva["estado"] == "ACTIVA":
        segundos = int((reserva["fechaExpiracion"] - _now()).total_seconds())
    else:
        segundos = 0
    return {
        "id": reserva["id"],
        "tipoEntradaId": reserva["tipoEntradaId"],
        "usuarioId": reserva["usuarioId"],
        "cantidad": reserva["cantidad"],
        "fechaCreacion": reserva["fechaCreacion"].isoformat(),
        "fechaExpiracion": reserva["fechaExpiracion"].isoformat(),
        "estado": reserva["estado"],
        "segundosRestantes": max(0, segundos),
    }


def _validar_cantidad(value):
    try:
        cantidad = int(value)
    except (TypeError, ValueError):
        return None
    if not 1 <= cantidad <= MAX_CANTIDAD:
        return None
    return cantidad


# ENDPOINT: Crear reserva temporal (decrementa stock)
@app.route("/api/reservas/crear", methods=["POST"])
def crear_reserva():
    if CHAOS_FLAGS["crash"]:
        return _error("Servicio de reservas caído (simulado).", 503)

    payload = request.get_json(force=True, silent=True) or {}
    tipo_id = payload.get("tipoEntradaId")
    usuario_id = payload.get("usuarioId")
    cantidad = _validar_cantidad(payload.get("cantidad"))
    if tipo_id is None:
        return _error("El tipo de entrada es requerido", 400)
    if usuario_id is None:
        return _error("El usuario es requerido", 400)
    if cantidad is None:
        return _error(f"La cantidad debe estar entre 1 y {MAX_CANTIDAD}", 400)

    with _lock:
        tipo = TIPOS_ENTRADA.get(int(tipo_id))
        if tipo is None:
            return _error("Tipo de entrada no encontrado", 404)
        if tipo["disponible"] < cantidad:
            return _error("No hay stock disponible para este tipo de entrada", 409)
        tipo["disponible"] -= cantidad

        reserva_id = _next_id["reserva"]
        _next_id["reserva"] += 1
        creada = _now()
        reserva = {
            "id": reserva_id,
            "tipoEntradaId": int(tipo_id),
            "usuarioId": usuario_id,
            "cantidad": cantidad,
            "fechaCreacion": creada,
            "fechaExpiracion": creada + timedelta(minutes=EXPIRACION_MINUTOS),
            "estado": "ACTIVA",
        }
        RESERVAS[reserva_id] = reserva

    logger.info("Reserva creada", event_type="reserva_created", reserva_id=reserva_id)
    return jsonify(_reserva_json(reserva)), 200


# ENDPOINT: Liberar reserva (restaura stock). Idempotente.
@app.route("/api/reservas/<int:reserva_id>/liberar", methods=["PUT"])
def liberar_reserva(reserva_id):
    with _lock:
        RELEASE_CALLS[reserva_id] = RELEASE_CALLS.get(reserva_id, 0) + 1
        reserva = RESERVAS.get(reserva_id)
        if reserva is None:
            return _error(f"Reserva no encontrada con ID: {reserva_id}", 404)
        if reserva["estado"] == "ACTIVA":
            TIPOS_ENTRADA[reserva["tipoEntradaId"]]["disponible"] += reserva["cantidad"]
            reserva["estado"] = "LIBERADA"
            logger.info("Reserva liberada", event_type="reserva_released", reserva_id=reserva_id)
        else:
            logger.warning(
                "Reserva no activa",
                event_type="reserva_release_skipped",
                reserva_id=reserva_id,
                estado=reserva["estado"],
            )
        return jsonify(_reserva_json(reserva)), 200


def _confirmar(reserva):
    """Requiere el lock tomado. Devuelve un mensaje de error o None."""
    if reserva["estado"] != "ACTIVA":
        return f"La reserva no está activa, estado actual: {reserva['estado']}"
    if _now() > reserva["fechaExpiracion"]:
        return f"La reserva ha expirado el {reserva['fechaExpiracion'].isoformat()}"
    reserva["estado"] = "CONFIRMADA"
    return None


# ENDPOINT: Confirmar reserva (pago exitoso)
@app.route("/api/reservas/<int:reserva_id>/confirmar", methods=["PUT"])
def confirmar_reserva(reserva_id):
    with _lock:
        reserva = RESERVAS.get(reserva_id)
        if reserva is None:
            return _error(f"Reserva no encontrada con ID: {reserva_id}", 404)
        problema = _confirmar(reserva)
        if problema:
            return _error(problema, 400)
        return jsonify(_reserva_json(reserva)), 200


# ENDPOINT: Reservas activas de un usuario
@app.route("/api/reservas/usuario/<usuario_id>/activas")
def reservas_activas(usuario_id):
    with _lock:
        activas = [
            _reserva_json(r)
            for r in RESERVAS.values()
            if str(r["usuarioId"]) == usuario_id and r["estado"] == "ACTIVA"
        ]
    return jsonify(activas), 200


# ENDPOINT: Compra de una línea (consume la reserva)
@app.route("/api/orchestration/purchase-ticket", methods=["POST"])
def purchase_ticket():
    if request.headers.get("X-User-ID") is None:
        return _error("Header X-User-ID es requerido", 400)

    payload = request.get_json(force=True, silent=True) or {}
    key = payload.get("idempotencyKey")
    if key and key in PURCHASES:
        body, status = PURCHASES[key]
        return jsonify(body), status

    if CHAOS_FLAGS["latency_seconds"] > 0:
        time.sleep(CHAOS_FLAGS["latency_seconds"])
    if CHAOS_FLAGS["fail"]:
        return _error("Pago rechazado por el proveedor (simulado).", 502)

    cantidad = _validar_cantidad(payload.get("cantidad"))
    metodo = payload.get("paymentMethod") or {}
    if cantidad is None:
        return _error(f"La cantidad debe estar entre 1 y {MAX_CANTIDAD}", 400)
    if not metodo.get("cardNumber"):
        return _error("El método de pago es requerido", 400)

    with _lock:
        reserva = RESERVAS.get(payload.get("reservaId"))
        if reserva is None:
            return _error("Reserva no encontrada", 404)
        tipo = TIPOS_ENTRADA[reserva["tipoEntradaId"]]
        monto = tipo["precio"] * cantidad

        if str(metodo["cardNumber"]).endswith("0000"):
            body, status = {"error": "Pago rechazado: Tarjeta rechazada por el emisor"}, 402
        elif monto > MONTO_MAXIMO:
            body, status = {"error": "Pago rechazado: Monto excede el límite permitido"}, 402
        else:
            problema = _confirmar(reserva)
            if problema:
                return _error(problema, 400)
            ticket_id = _next_id["ticket"]
            _next_id["ticket"] += 1
            body = {
                "exitoso": True,
                "ticketId": ticket_id,
                "reservaId": reserva["id"],
                "tipoEntrada": tipo["nombre"],
                "cantidad": cantidad,
                "montoTotal": monto,
            }
            status = 200

        if key:
            PURCHASES[key] = (body, status)

    logger.info(
        "Compra procesada",
        event_type="purchase_processed",
        reserva_id=reserva["id"],
        status=status,
    )
    return jsonify(body), status


# ENDPOINT ADMIN: Restablecer stock
@app.route("/admin/reset", methods=["POST"])
def reset():
    payload = request.get_json(force=True, silent=True) or {}
    tipos = payload.get("tipos")
    reset_state(tipos)
    return jsonify({"status": "ok", "tipos": TIPOS_ENTRADA}), 200


# ENDPOINTS CHAOS
@app.route("/chaos/crash", methods=["POST"])
def chaos_crash():
    payload = request.get_json(force=True, silent=True) or {}
    CHAOS_FLAGS["crash"] = bool(payload.get("enabled", False))
    return jsonify({"status": "ok", "crash": CHAOS_FLAGS["crash"]}), 200


@app.route("/chaos/fail", methods=["POST"])
def chaos_fail():
    payload = request.get_json(force=True, silent=True) or {}
    CHAOS_FLAGS["fail"] = bool(payload.get("enabled", False))
    return jsonify({"status": "ok", "fail": CHAOS_FLAGS["fail"]}), 200


@app.route("/chaos/latency", methods=["POST"])
def chaos_latency():
    payload = request.get_json(force=True, silent=True) or {}
    CHAOS_FLAGS["latency_seconds"] = int(payload.get("seconds", 0))
    return jsonify({"status": "ok", "latency": CHAOS_FLAGS["latency_seconds"]}), 200


@app.route("/health")
def health():
    """Estado del servicio, stock actual y liberaciones recibidas por reserva"""
    with _lock:
        return jsonify(
            {
                "status": "ok",
                "tipos": {str(k): v for k, v in TIPOS_ENTRADA.items()},
                "release_calls": {str(k): v for k, v in RELEASE_CALLS.items()},
            }
        )


# PUNTO DE ENTRADA: Inicia el servidor en el puerto 5002
if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5002)
