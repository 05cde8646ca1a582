# ============================================
# SCRIPT: Carrera entre rutas de liberación
# ============================================
# Demuestra que dos disparadores simultáneos (cancelar + cerrar pestaña)
# liberan cada reserva una sola vez.
#
# ESCENARIO:
# 1. Restablecer el backend de reservas
# 2. Crear un checkout con dos tipos de entrada en una pestaña
# 3. Enviar en paralelo POST /checkout/cancel y POST /checkout/unload
# 4. Leer del backend cuántas liberaciones recibió cada reserva
#    - ESPERADO: exactamente 1 por reserva

import argparse
import concurrent.futures
import json
import uuid

import requests


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--checkout", default="http://localhost:5001")
    parser.add_argument("--reservas", default="http://localhost:5002")
    args = parser.parse_args()

    print("Restableciendo backend de reservas...")
    requests.post(f"{args.reservas}/admin/reset", json={}, timeout=3)

    headers = {"X-Tab-Id": f"race-{uuid.uuid4().hex[:8]}"}
    payload = {
        "evento": {"nombre": "Concierto", "fecha": "2026-12-01T20:00:00", "lugar": "Estadio"},
        "seleccion": [
            {"tipoEntradaId": 1, "nombre": "General", "cantidad": 2, "precio": 50},
            {"tipoEntradaId": 2, "nombre": "VIP", "cantidad": 1, "precio": 150},
        ],
        "usuarioId": "race-user",
    }
    created = requests.post(f"{args.checkout}/checkout", json=payload, headers=headers, timeout=5)
    body = created.json()
    if created.status_code != 201:
        print(f"No se pudo crear el checkout: {created.status_code} {body}")
        return
    reserva_ids = [str(r["id"]) for r in body["reservas"]]
    print(f"Reservas creadas: {reserva_ids} (tiempo restante {body['timeLeftText']})")

    with concurrent.futures.ThreadPoolExecutor(max_workers=2) as executor:
        futures = [
            executor.submit(
                requests.post, f"{args.checkout}/checkout/cancel",
                json={"confirm": True}, headers=headers, timeout=10,
            ),
            executor.submit(
                requests.post, f"{args.checkout}/checkout/unload",
                headers=headers, timeout=10,
            ),
        ]
        statuses = [future.result().status_code for future in futures]

    calls = requests.get(f"{args.reservas}/health", timeout=3).json()["release_calls"]
    per_reserva = {rid: calls.get(rid, 0) for rid in reserva_ids}
    print(json.dumps({"statuses": statuses, "release_calls": per_reserva}, indent=2))

    if all(count == 1 for count in per_reserva.values()):
        print("\n✓ Cada reserva se liberó exactamente una vez.")
    else:
        print("\nLIBERACIÓN DUPLICADA O FALTANTE detectada.")


if __name__ == "__main__":
    main()
