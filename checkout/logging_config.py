# ============================================
# LOGS ESTRUCTURADOS DEL CHECKOUT
# ============================================
# Una línea JSON por evento. Cada llamada lleva un event_type (hold_armed,
# reservation_released, purchase_failed...) para filtrar por paso del ciclo
# de vida. El servicio de checkout asocia el X-Tab-Id con bind_tab(), así
# todas las líneas de una request quedan etiquetadas con su pestaña.

import logging

import structlog

from .config import LOG_LEVEL

_configured = False


def configure_logging(level=LOG_LEVEL):
    """Configura structlog sobre logging de la stdlib (una sola vez)."""
    global _configured
    if _configured:
        return
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, str(level).upper(), logging.INFO),
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name=None):
    configure_logging()
    return structlog.get_logger(name)


def bind_tab(tab_id):
    """Etiqueta los logs de la request actual con la pestaña."""
    structlog.contextvars.bind_contextvars(tab_id=tab_id)


def unbind_tab():
    structlog.contextvars.unbind_contextvars("tab_id")
