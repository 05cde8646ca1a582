# ============================================
# CONFIGURACIÓN DEL CHECKOUT
# ============================================
# Todos los valores se leen de variables de entorno (Docker Compose / shell)
# con un valor por defecto apto para desarrollo local.

import os

# URL base del backend de reservas/orquestación
RESERVAS_URL = os.getenv("RESERVAS_URL", "http://localhost:5002")

# Ventana de retención: 300 segundos desde la primera reserva del lote
HOLD_SECONDS = int(os.getenv("HOLD_SECONDS", "300"))

# Frecuencia del temporizador (1 Hz)
TICK_SECONDS = float(os.getenv("TICK_SECONDS", "1"))

# Timeout de cada llamada HTTP al backend
REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "5"))

# Directorio donde el servicio de checkout guarda un archivo por pestaña.
# Vacío = almacenamiento en memoria (se pierde al reiniciar).
CHECKOUT_STORE_DIR = os.getenv("CHECKOUT_STORE_DIR", "")

# Límite de entradas por tipo aceptado por el backend
MAX_CANTIDAD = int(os.getenv("MAX_CANTIDAD", "10"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
