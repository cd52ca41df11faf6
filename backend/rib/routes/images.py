"""
Modulo de rutas de imagenes y archivos adjuntos.

Endpoints:

    POST /api/v1/images      -> sube un archivo (rate limit "upload-file")
    GET  /images/{hash}      -> sirve un archivo por su hash (publico)

La ruta publica NO lleva el prefijo /api/v1 para que el frontend pueda
usarla directamente en <img src="/images/{hash}">.

Flujo de POST /api/v1/images:
    1. Dependencia require_admission: el limitador decide ANTES de leer
       el body (la firma de la funcion no declara File/Form a proposito).
    2. Content-Length: si el body declarado ya excede el limite (mas un
       margen para los headers del multipart), rechazamos sin leer nada.
    3. Lectura del body en streaming: cada chunk de la red pasa por el
       parser multipart y los bytes del campo "file" van directo al
       pipeline. El body NUNCA se lee entero antes de validar: un archivo
       demasiado grande o de tipo no permitido corta la lectura en el
       chunk donde se detecta (peticiones chunked sin Content-Length
       incluidas).
    4. Commit en el almacen (en el threadpool: hace I/O bloqueante).
    5. 201 si el objeto es nuevo, 200 si ya existia (duplicado).

Los errores del pipeline (TooLarge, UnsupportedType, StreamError,
StorageError) se traducen a HTTP en main.py, en un solo lugar.
"""

import re

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool
from starlette.requests import ClientDisconnect, Request

from rib.config import settings
from rib.limiter import edge_limiter, require_admission
from rib.metrics import record_upload
from rib.models.schemas import ErrorResponse, UploadResponse
from rib.services.errors import StreamError, TooLarge, UploadError
from rib.services.multipart_stream import FilePartReader, multipart_boundary
from rib.services.pipeline import StoredObjectRef, upload_pipeline
from rib.services.rate_limiter import Scope
from rib.services.storage import ObjectNotFound

router = APIRouter()

# Margen para boundaries y headers de cada parte del multipart.
MULTIPART_OVERHEAD = 64 * 1024

# SHA-256 en hexadecimal: exactamente 64 caracteres [0-9a-f].
# SEGURIDAD: validamos el hash ANTES de usarlo para construir una key de S3
# o una ruta de disco (previene "../../etc/passwd" como hash).
HASH_PATTERN = re.compile(r"^[0-9a-f]{64}$")


@router.post(
    "/api/v1/images",
    response_model=UploadResponse,
    status_code=201,
    dependencies=[Depends(require_admission(Scope.UPLOAD_FILE))],
    responses={
        200: {"model": UploadResponse, "description": "File already existed (idempotent)"},
        400: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
        415: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
    },
)
async def upload_image(request: Request):
    """
    Sube un archivo (campo multipart "file").

    Retorna:
        UploadResponse: hash, mime, size y duplicate.

    Raises:
        TooLarge (413), UnsupportedType (415), StreamError (400, incluye
        body mal formado o sin campo "file"), StorageError (500),
        RateLimited (429).
    """
    try:
        ref = await _receive_upload(request)
    except UploadError as e:
        record_upload(e.outcome)
        raise
    record_upload("duplicate" if ref.duplicate else "fresh")

    body = UploadResponse(hash=ref.hash, mime=ref.mime_type, size=ref.size, duplicate=ref.duplicate)
    return JSONResponse(status_code=200 if ref.duplicate else 201, content=body.model_dump())


async def _receive_upload(request: Request) -> StoredObjectRef:
    # Techo del body completo: el archivo mas el margen del multipart.
    body_limit = upload_pipeline.max_size + MULTIPART_OVERHEAD

    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > body_limit:
        raise TooLarge(upload_pipeline.max_size)

    reader = FilePartReader(multipart_boundary(request.headers.get("content-type")))
    received = 0

    with upload_pipeline.candidate() as candidate:
        try:
            async for chunk in request.stream():
                received += len(chunk)
                if received > body_limit:
                    raise TooLarge(upload_pipeline.max_size)
                data = reader.feed(chunk)
                if data:
                    # feed() hashea y escribe en el spool (que pasa a disco
                    # despues de 1 MB): I/O bloqueante, va al threadpool.
                    await run_in_threadpool(candidate.feed, data)
        except ClientDisconnect as e:
            raise StreamError("client disconnected during upload") from e
        reader.close()

        return await run_in_threadpool(upload_pipeline.publish, candidate)


@router.get("/images/{digest}")
@edge_limiter.limit(settings.RL_READ_LIMIT)
async def get_image(request: Request, digest: str):
    """
    Sirve un archivo almacenado con su tipo MIME.

    Los objetos son inmutables (el hash ES el contenido), asi que el
    navegador y cualquier CDN pueden cachearlos para siempre.
    """
    if not HASH_PATTERN.fullmatch(digest):
        raise HTTPException(status_code=404, detail="not found")
    try:
        data, mime_type = await run_in_threadpool(upload_pipeline.load, digest)
    except ObjectNotFound:
        raise HTTPException(status_code=404, detail="not found")

    return Response(
        content=data,
        media_type=mime_type,
        headers={
            "Cache-Control": "public, max-age=31536000, immutable",
            # Impide que el navegador "adivine" otro tipo distinto al nuestro.
            "X-Content-Type-Options": "nosniff",
        },
    )
