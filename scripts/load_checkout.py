# ============================================
# SCRIPT: Prueba de carga del checkout
# ============================================
# Simula muchas pestañas comprando a la vez sobre un stock limitado.
# Cada pestaña crea su checkout y luego paga, cancela o abandona la página.
#
# QUÉ PRUEBA:
# - Rechazos por falta de stock (409) y su rollback
# - Que el stock vuelva a su valor inicial menos lo vendido

import argparse
import concurrent.futures
import json
import random
import time

import requests

OUTCOMES = ("pay", "cancel", "unload")


def run_tab(index, checkout_url):
    headers = {"X-Tab-Id": f"load-{index}"}
    payload = {
        "evento": {"nombre": "Concierto"},
        "seleccion": [
            {"tipoEntradaId": 1, "nombre": "General", "cantidad": 1, "precio": 50},
            {"tipoEntradaId": 3, "nombre": "Palco", "cantidad": 1, "precio": 400},
        ],
        "usuarioId": f"user-{index}",
    }
    try:
        created = requests.post(f"{checkout_url}/checkout", json=payload, headers=headers, timeout=10)
        if created.status_code != 201:
            return "create", created.status_code

        action = random.choice(OUTCOMES)
        if action == "pay":
            response = requests.post(
                f"{checkout_url}/checkout/pay",
                json={
                    "usuarioId": f"user-{index}",
                    "paymentMethod": {
                        "cardNumber": "4111 1111 1111 1111",
                        "cardHolder": f"USUARIO {index}",
                        "expiryDate": "12/29",
                        "cvv": "123",
                    },
                },
                headers=headers,
                timeout=10,
            )
        elif action == "cancel":
            response = requests.post(
                f"{checkout_url}/checkout/cancel", json={"confirm": True}, headers=headers, timeout=10
            )
        else:
            response = requests.post(f"{checkout_url}/checkout/unload", headers=headers, timeout=10)
        return action, response.status_code
    except requests.RequestException as exc:
        return "error", str(exc)


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--checkout", default="http://localhost:5001")
    parser.add_argument("--reservas", default="http://localhost:5002")
    parser.add_argument("--tabs", type=int, default=20)
    parser.add_argument("--workers", type=int, default=10)
    args = parser.parse_args()

    requests.post(f"{args.reservas}/admin/reset", json={}, timeout=3)

    started = time.time()
    results = []
    with concurrent.futures.ThreadPoolExecutor(max_workers=args.workers) as executor:
        futures = [executor.submit(run_tab, i, args.checkout) for i in range(args.tabs)]
        for future in concurrent.futures.as_completed(futures):
            results.append(future.result())
    elapsed = time.time() - started

    summary = {}
    for action, status in results:
        label = f"{action}:{status}"
        summary[label] = summary.get(label, 0) + 1

    stock = requests.get(f"{args.reservas}/health", timeout=3).json()["tipos"]
    print(json.dumps({"elapsed": elapsed, "summary": summary, "stock": stock}, indent=2))


if __name__ == "__main__":
    main()
