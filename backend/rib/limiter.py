"""
Modulo de limitacion de tasa de peticiones (Rate Limiting).

Aqui se "arman" los limitadores que usan las rutas. Hay DOS niveles:

1. **Limitador de escritura** (`rate_limiter`): nuestro SlidingWindowLimiter
   (ver services/rate_limiter.py). Controla acciones concretas por cliente:
   crear hilo, crear respuesta, subir archivo. Cada accion tiene su propia
   regla (limite, ventana). Las rutas lo usan como dependencia de FastAPI:

       @router.post("/api/v1/images",
                    dependencies=[Depends(require_admission(Scope.UPLOAD_FILE))])

   Si el cliente excedio su limite, la dependencia lanza RateLimited y el
   handler de main.py responde HTTP 429 con el header Retry-After.

2. **Limitador grueso de lectura** (`edge_limiter`): SlowAPI, para las
   rutas publicas de lectura (servir imagenes). No necesita la exactitud
   por accion; solo frena scrapers agresivos.

Como identificamos al cliente?
------------------------------
Detras de un proxy o balanceador, la IP del socket es la del proxy, no la
del cliente. client_ip() mira, en orden:
    1. X-Forwarded-For: "cliente, proxy1, proxy2" -> primer salto
    2. Forwarded (RFC 7239): "for=1.2.3.4;proto=https" -> valor de for=
    3. La IP del socket (request.client.host)
    4. "unknown"
"""

from fastapi import Request
from loguru import logger
from slowapi import Limiter

from rib.config import load_rate_limit_config, settings
from rib.metrics import record_decision
from rib.services.rate_limiter import Scope, SlidingWindowLimiter


class RateLimited(Exception):
    """
    El cliente excedio el limite de una accion.

    Atributos:
        scope (Scope): Accion rechazada.
        retry_after (int): Segundos sugeridos antes de reintentar (la
            ventana de la accion).
    """

    def __init__(self, scope: Scope, retry_after: int):
        self.scope = scope
        self.retry_after = retry_after
        super().__init__(f"rate limited: {scope.value}")


def client_ip(request: Request) -> str:
    """Extrae la IP del cliente de los headers de proxy o del socket."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    forwarded = request.headers.get("forwarded")
    if forwarded:
        for part in forwarded.split(";"):
            part = part.strip()
            if part.lower().startswith("for="):
                # El valor puede venir entre comillas, con lista o con puerto:
                #   for="1.2.3.4:5678", for=1.2.3.4, for=5.6.7.8
                #   for="[2001:db8::1]:4711"  (IPv6 siempre entre corchetes)
                value = part[4:].split(",")[0].strip().strip('"')
                if value.startswith("["):
                    ip_only = value[1:].split("]")[0]
                else:
                    ip_only = value.split(":")[0]
                if ip_only:
                    return ip_only

    if request.client and request.client.host:
        return request.client.host
    return "unknown"


# Instancia global del limitador de escritura (Singleton implicito).
# load_rate_limit_config() valida las reglas al importar: una regla invalida
# impide que la aplicacion arranque.
rate_limiter = SlidingWindowLimiter(load_rate_limit_config(), enabled=settings.RL_ENABLED)

# Instancia global del limitador de lectura de SlowAPI.
edge_limiter = Limiter(key_func=client_ip)


def require_admission(scope: Scope):
    """
    Crea una dependencia de FastAPI que admite (o rechaza) la accion `scope`.

    Las rutas que usan esta dependencia no declaran parametros de body
    (File, Form), asi FastAPI la resuelve ANTES de leer el body: una subida
    rechazada no consume ancho de banda. Una peticion admitida que luego
    falla (ej: el cliente se desconecta) sigue contando contra el limite.
    """

    def dependency(request: Request) -> None:
        ip = client_ip(request)
        decision = rate_limiter.admit(scope, ip)
        record_decision(scope.value, decision.allowed)
        if not decision.allowed:
            window = rate_limiter.rule_for(scope).window
            logger.warning(f"rate limit denied scope={scope.value} client={ip}")
            raise RateLimited(scope, retry_after=int(window))

    return dependency
