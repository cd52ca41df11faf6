"""
Modulo de metricas de Prometheus.

Se exponen en GET /metrics (ver main.py) en el formato de texto que
Prometheus "scrapea" periodicamente.

Metricas:
    rate_limit_decisions_total{scope, decision}
        Cada decision del limitador de escritura. decision es "allowed" o
        "denied"; scope es la accion ("create-thread", "upload-file", ...).
    uploads_total{outcome}
        Resultado de cada subida: "fresh", "duplicate" o el tipo de error
        ("too_large", "unsupported_type", "stream_error", "storage_error").

Los contadores son globales del proceso, igual que el limitador: con varias
replicas, Prometheus suma las series de cada una.
"""

from prometheus_client import Counter

RATE_LIMIT_DECISIONS = Counter(
    "rate_limit_decisions_total",
    "Rate limiter decisions per action",
    ["scope", "decision"],
)

UPLOADS = Counter(
    "uploads_total",
    "Upload outcomes",
    ["outcome"],
)


def record_decision(scope: str, allowed: bool) -> None:
    RATE_LIMIT_DECISIONS.labels(scope=scope, decision="allowed" if allowed else "denied").inc()


def record_upload(outcome: str) -> None:
    UPLOADS.labels(outcome=outcome).inc()
