# ============================================
# SERVICIO CHECKOUT - Ciclo de vida de la reserva
# ============================================
# Cada pestaña del navegador se identifica con el header X-Tab-Id y tiene su
# propio almacén y su propio controlador. Rutas:
#   POST   /checkout          seleccionar entradas -> crear reservas + timer
#   GET    /checkout          estado y tiempo restante (reanuda tras reinicio)
#   POST   /checkout/cancel   cancelar (requiere {"confirm": true})
#   POST   /checkout/pay      pagar las líneas pendientes
#   POST   /checkout/unload   beacon al cerrar la pestaña
#   DELETE /checkout          el usuario navegó a otra parte

import os
import re
import threading
from collections import OrderedDict

from flask import Flask, g, jsonify, request

from checkout.api_client import ReservasClient
from checkout.config import CHECKOUT_STORE_DIR, RESERVAS_URL
from checkout.controller import CheckoutController, format_time_left
from checkout.coordinator import FinalizeReason
from checkout.errors import EXPIRED_NOTICE, CheckoutError, PurchaseError, ValidationError
from checkout.logging_config import bind_tab, get_logger, unbind_tab
from checkout.models import LineItem
from checkout.payment import PaymentMethod
from checkout.store import InMemorySessionStore, JsonFileSessionStore

app = Flask(__name__)
logger = get_logger("services.checkout")

_TAB_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

# Pestañas con checkout vivo. Un controlador sin sesión se descarta al final
# de cada request; de las pestañas cerradas solo se recuerda cómo terminaron.
MAX_FINISHED_TABS = 1024

_controllers_lock = threading.Lock()
CONTROLLERS = {}
FINISHED = OrderedDict()


def _error(message, status=400, **extra):
    body = {"status": "error", "message": message}
    body.update(extra)
    return jsonify(body), status


def make_store(tab_id):
    if CHECKOUT_STORE_DIR:
        return JsonFileSessionStore(os.path.join(CHECKOUT_STORE_DIR, f"{tab_id}.json"))
    return InMemorySessionStore()


def make_client(token):
    return ReservasClient(RESERVAS_URL, token=token)


def make_controller(tab_id, token):
    return CheckoutController(make_client(token), make_store(tab_id))


def _bearer_token():
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):]
    return None


def _controller():
    tab_id = request.headers.get("X-Tab-Id", "")
    if not _TAB_ID_RE.match(tab_id):
        raise ValidationError("Header X-Tab-Id es requerido")
    with _controllers_lock:
        controller = CONTROLLERS.get(tab_id)
        if controller is None:
            controller = make_controller(tab_id, _bearer_token())
            CONTROLLERS[tab_id] = controller
    # El token puede llegar o renovarse en cualquier request de la pestaña
    controller.client.set_token(_bearer_token())
    g.tab_id, g.controller = tab_id, controller
    bind_tab(tab_id)
    return controller


@app.after_request
def _discard_idle_controller(response):
    unbind_tab()
    controller = g.pop("controller", None)
    if controller is None or not controller.discardable():
        return response
    tab_id = g.pop("tab_id")
    with _controllers_lock:
        if CONTROLLERS.get(tab_id) is controller:
            del CONTROLLERS[tab_id]
        if controller.outcome is not None:
            FINISHED[tab_id] = controller.outcome
            FINISHED.move_to_end(tab_id)
            while len(FINISHED) > MAX_FINISHED_TABS:
                FINISHED.popitem(last=False)
    return response


def _session_body(controller):
    session = controller.session
    time_left = controller.time_left
    body = {"status": "ok", "timeLeft": time_left, "timeLeftText": format_time_left(time_left)}
    body.update(session.to_json())
    return body


def _finished_response(controller):
    """Respuesta cuando la pestaña ya no tiene compra activa."""
    outcome = controller.outcome
    if outcome is None:
        with _controllers_lock:
            outcome = FINISHED.get(g.tab_id)
    if outcome is FinalizeReason.EXPIRED:
        return _error(EXPIRED_NOTICE, 410, redirect="/")
    return _error("No hay datos de compra. Selecciona tickets primero.", 404, redirect="/")


@app.errorhandler(CheckoutError)
def _checkout_error(exc):
    if isinstance(exc, PurchaseError):
        return _error(exc.message, exc.status_code, idempotencyKeys=exc.idempotency_keys)
    return _error(exc.message, exc.status_code)


# ENDPOINT: Seleccionar entradas y crear las reservas
@app.route("/checkout", methods=["POST"])
def start_checkout():
    controller = _controller()
    payload = request.get_json(force=True, silent=True) or {}
    try:
        seleccion = [LineItem.from_json(item) for item in payload.get("seleccion", [])]
    except (KeyError, TypeError, ValueError, ArithmeticError):
        raise ValidationError("Selección de entradas inválida")
    usuario_id = payload.get("usuarioId")
    if usuario_id is None:
        raise ValidationError("El usuario es requerido")

    controller.start(payload.get("evento"), seleccion, usuario_id)
    with _controllers_lock:
        FINISHED.pop(g.tab_id, None)
    return jsonify(_session_body(controller)), 201


# ENDPOINT: Estado del checkout
@app.route("/checkout", methods=["GET"])
def get_checkout():
    controller = _controller()
    if controller.resume() is None:
        return _finished_response(controller)
    controller.tick()
    if not controller.active:
        return _finished_response(controller)
    return jsonify(_session_body(controller)), 200


# ENDPOINT: Cancelar la compra (acción destructiva, requiere confirmación)
@app.route("/checkout/cancel", methods=["POST"])
def cancel_checkout():
    controller = _controller()
    payload = request.get_json(force=True, silent=True) or {}
    controller.resume()
    outcome = controller.cancel(confirmed=bool(payload.get("confirm", False)))
    return jsonify({"status": "ok", "outcome": outcome.value if outcome else None, "redirect": "/"}), 200


# ENDPOINT: Procesar el pago
@app.route("/checkout/pay", methods=["POST"])
def pay_checkout():
    controller = _controller()
    payload = request.get_json(force=True, silent=True) or {}
    usuario_id = payload.get("usuarioId")
    if usuario_id is None:
        raise ValidationError("El usuario es requerido")

    if controller.resume() is None:
        return _finished_response(controller)

    result = controller.pay(
        usuario_id,
        PaymentMethod.from_json(payload.get("paymentMethod")),
        idempotency_keys=payload.get("idempotencyKeys"),
        simulate_rejection=bool(payload.get("simularRechazo", False)),
    )
    return (
        jsonify(
            {
                "status": "ok",
                "message": "Compra exitosa",
                "tickets": result.tickets,
                "idempotencyKeys": result.idempotency_keys,
                "redirect": "/mis-tickets",
            }
        ),
        200,
    )


# ENDPOINT: Beacon de cierre de pestaña (best effort)
@app.route("/checkout/unload", methods=["POST"])
def unload_checkout():
    controller = _controller()
    controller.resume()
    controller.on_unload()
    return "", 202


# ENDPOINT: Desmontaje (navegación dentro de la app)
@app.route("/checkout", methods=["DELETE"])
def teardown_checkout():
    controller = _controller()
    controller.resume()
    controller.teardown()
    return "", 204


@app.route("/health")
def health():
    with _controllers_lock:
        active = sum(1 for c in CONTROLLERS.values() if c.active)
    return jsonify({"status": "ok", "active_checkouts": active})


# PUNTO DE ENTRADA: Inicia el servidor Flask en el puerto 5001
if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5001)
