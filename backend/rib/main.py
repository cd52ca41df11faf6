"""
Punto de entrada principal de la aplicacion FastAPI.

Aqui se:
1. Configura el logging (loguru).
2. Crea la instancia de la aplicacion FastAPI.
3. Registra los handlers de error (rate limit, errores de subida).
4. Configura CORS.
5. Registra las rutas.

Arquitectura:
-------------
    main.py (punto de entrada / raiz de composicion)
        |
        +-- routes/images.py        (Controlador HTTP de subidas)
        |
        +-- services/
        |    +-- rate_limiter.py    (ventana deslizante por accion y cliente)
        |    +-- pipeline.py        (subida en streaming + deduplicacion)
        |    +-- multipart_stream.py (lectura en streaming del multipart)
        |    +-- validator.py       (deteccion de tipo por magic bytes)
        |    +-- storage.py         (almacen direccionado por contenido)
        |    +-- errors.py          (taxonomia de errores de subida)
        |
        +-- models/schemas.py       (contratos de respuesta)
        +-- config.py               (configuracion centralizada)
        +-- limiter.py              (instancias de los limitadores)
        +-- metrics.py              (contadores de Prometheus, GET /metrics)
        +-- logging_config.py       (loguru)

Las rutas de hilos y respuestas viven en otro servicio; para limitar sus
acciones usan la misma dependencia: require_admission(Scope.CREATE_THREAD)
y require_admission(Scope.CREATE_REPLY).
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from loguru import logger
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.concurrency import run_in_threadpool

from rib.config import settings
from rib.limiter import RateLimited, edge_limiter, rate_limiter
from rib.logging_config import setup_logging
from rib.routes.images import router as images_router
from rib.services.errors import StorageError, UploadError
from rib.services.pipeline import upload_pipeline
from rib.services.storage import S3ObjectStore

setup_logging(settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Arranque: asegura que el bucket exista antes de aceptar subidas.

    Si S3/MinIO no responde, la aplicacion no arranca (mejor fallar al
    desplegar que devolver 500 en cada subida).
    """
    store = upload_pipeline.store
    if isinstance(store, S3ObjectStore):
        await run_in_threadpool(store.ensure_bucket)
    logger.info(
        f"rib started storage={type(store).__name__} rate_limit_enabled={rate_limiter.enabled}"
    )
    yield


app = FastAPI(title="rib", lifespan=lifespan)

# ---------- Rate limiting ----------

# SlowAPI busca el limiter en app.state para las rutas decoradas con
# @edge_limiter.limit(...).
app.state.limiter = edge_limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(RateLimited)
async def rate_limited_handler(request: Request, exc: RateLimited):
    """Traduce un DENIED del limitador de escritura a HTTP 429."""
    return JSONResponse(
        status_code=429,
        content={"detail": "rate limited"},
        headers={"Retry-After": str(exc.retry_after)},
    )


@app.exception_handler(UploadError)
async def upload_error_handler(request: Request, exc: UploadError):
    """
    Traduce los errores del pipeline de subida a HTTP.

    Los errores del cliente (413, 415, 400) se registran como warning; un
    StorageError es un fallo nuestro y se registra como error. Al cliente
    no le mostramos detalles internos del backend de almacenamiento.
    """
    if isinstance(exc, StorageError):
        logger.error(f"upload failed: storage error: {exc}")
        detail = "internal error"
    else:
        logger.warning(f"upload rejected: {type(exc).__name__}: {exc}")
        detail = str(exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": detail})


# ---------- Configuracion de CORS ----------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------- Health Check ----------

@app.get("/api/health")
async def health_check():
    """
    Endpoint de verificacion de salud del servidor.

    Retorna:
        dict: {"status": "ok"} si el servidor esta funcionando correctamente.
    """
    return {"status": "ok"}


# ---------- Metricas ----------

@app.get("/metrics", include_in_schema=False)
async def metrics():
    """Contadores del limitador y de las subidas en formato Prometheus."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# ---------- Registro de rutas ----------

app.include_router(images_router)
