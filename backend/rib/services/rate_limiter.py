"""
Modulo del limitador de tasa con ventana deslizante (sliding window log).

Este servicio decide, para una pareja (accion, cliente) y un instante dado,
si una nueva accion de escritura puede continuar. Si puede, la registra.

Algoritmo: ventana deslizante con registro de timestamps
---------------------------------------------------------
Para cada clave (accion, cliente) guardamos una cola (deque) con los
instantes de las peticiones ADMITIDAS. En cada llamada a admit():

    1. Descartamos por la izquierda los timestamps con
       now - ts >= ventana (ya "salieron" de la ventana).
    2. Si quedan menos que el limite, agregamos `now` y respondemos ALLOWED.
    3. Si no, respondemos DENIED y NO tocamos la cola.

Comparado con un contador por intervalos fijos, este algoritmo es exacto:
no permite rafagas de 2x limite en el borde entre dos intervalos. El costo
es O(k) por llamada, con k <= limite de la accion.

Limitacion conocida: el estado vive en memoria del proceso. Con N replicas
detras de un balanceador, cada replica cuenta por su lado y el limite
efectivo se multiplica por N. Se asume un limitador grueso en el borde.

Concurrencia: bloqueo por franjas (lock striping)
-------------------------------------------------
Las peticiones se atienden en paralelo (threadpool de Starlette). Dos
peticiones del MISMO cliente no pueden modificar su cola al mismo tiempo,
pero dos clientes distintos no deben esperarse entre si. Repartimos las
claves en `shards` franjas por hash; cada franja tiene su propio Lock y su
propio dict. admit() solo toma el lock de la franja de su clave, nunca hace
I/O y nunca se suspende.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum


class RateLimitConfigError(ValueError):
    """Regla invalida o accion sin regla. Se detecta al arrancar, no por peticion."""


class Scope(str, Enum):
    """Acciones de escritura con limite propio."""

    CREATE_THREAD = "create-thread"
    CREATE_REPLY = "create-reply"
    UPLOAD_FILE = "upload-file"


class Decision(Enum):
    ALLOWED = "allowed"
    DENIED = "denied"

    @property
    def allowed(self) -> bool:
        return self is Decision.ALLOWED


@dataclass(frozen=True)
class RateLimitRule:
    """
    Regla de una accion.

    Atributos:
        limit (int): Maximo de peticiones admitidas dentro de la ventana.
        window (float): Duracion de la ventana en segundos.
    """
    limit: int
    window: float


class _Shard:
    # Una franja del mapa: lock propio + colas de timestamps por clave.
    __slots__ = ("lock", "windows", "calls")

    def __init__(self):
        self.lock = threading.Lock()
        self.windows: dict[tuple[Scope, str], deque[float]] = {}
        self.calls = 0


class SlidingWindowLimiter:
    """
    Limitador en memoria por (accion, cliente).

    Parametros:
        rules (dict[Scope, RateLimitRule]): Una regla por cada Scope.
        enabled (bool): Con False, admit() siempre responde ALLOWED y no
            guarda nada (bypass global).
        shards (int): Numero de franjas de bloqueo.
        sweep_every (int): Cada cuantas llamadas a una franja se eliminan
            sus claves vacias. Es solo una optimizacion de memoria.

    Raises:
        RateLimitConfigError: Si falta la regla de alguna accion.
    """

    def __init__(
        self,
        rules: dict[Scope, RateLimitRule],
        enabled: bool = True,
        shards: int = 16,
        sweep_every: int = 1024,
    ):
        missing = [scope.value for scope in Scope if scope not in rules]
        if missing:
            raise RateLimitConfigError(f"missing rate limit rules for: {', '.join(missing)}")
        if shards < 1:
            raise RateLimitConfigError("shards must be >= 1")
        self.rules = dict(rules)
        self.enabled = enabled
        self.sweep_every = sweep_every
        self._shards = [_Shard() for _ in range(shards)]

    def rule_for(self, scope: Scope) -> RateLimitRule:
        return self.rules[Scope(scope)]

    def _shard_for(self, key: tuple[Scope, str]) -> _Shard:
        return self._shards[hash(key) % len(self._shards)]

    def admit(self, scope: Scope, client_id: str, now: float | None = None) -> Decision:
        """
        Decide si (scope, client_id) puede continuar en el instante `now`.

        Parametros:
            scope (Scope): Accion solicitada.
            client_id (str): Identificador estable del cliente (IP normalizada).
            now (float | None): Instante en segundos. Por defecto
                time.monotonic(); los tests pasan valores explicitos.

        Retorna:
            Decision: ALLOWED (y el instante queda registrado) o DENIED
            (sin ningun cambio de estado).
        """
        if not self.enabled:
            return Decision.ALLOWED

        scope = Scope(scope)
        rule = self.rules[scope]
        if now is None:
            now = time.monotonic()

        key = (scope, client_id)
        shard = self._shard_for(key)
        with shard.lock:
            window = shard.windows.get(key)
            if window is None:
                window = shard.windows[key] = deque()

            while window and now - window[0] >= rule.window:
                window.popleft()

            if len(window) < rule.limit:
                window.append(now)
                decision = Decision.ALLOWED
            else:
                decision = Decision.DENIED

            shard.calls += 1
            if shard.calls % self.sweep_every == 0:
                self._sweep_shard(shard, now)

        return decision

    def _sweep_shard(self, shard: _Shard, now: float) -> int:
        # Llamar con shard.lock tomado.
        stale = []
        for (scope, client_id), window in shard.windows.items():
            rule = self.rules[scope]
            while window and now - window[0] >= rule.window:
                window.popleft()
            if not window:
                stale.append((scope, client_id))
        for key in stale:
            del shard.windows[key]
        return len(stale)

    def sweep(self, now: float | None = None) -> int:
        """
        Elimina las claves cuya ventana ya no contiene timestamps.

        Retorna:
            int: Cantidad de claves eliminadas.
        """
        if now is None:
            now = time.monotonic()
        removed = 0
        for shard in self._shards:
            with shard.lock:
                removed += self._sweep_shard(shard, now)
        return removed

    def tracked_keys(self) -> int:
        """Numero de claves con estado en memoria (para tests y diagnostico)."""
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.windows)
        return total
