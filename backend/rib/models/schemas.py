"""
Modulo de esquemas (schemas) de datos de la API.

Define la estructura exacta de lo que sale de nuestra API, usando Pydantic.
FastAPI usa estos schemas para validar y serializar las respuestas y para
la documentacion automatica en /docs.
"""

from pydantic import BaseModel


class UploadResponse(BaseModel):
    """
    Schema de respuesta para POST /api/v1/images.

    Atributos:
        hash (str): SHA-256 del contenido (64 caracteres hexadecimales).
            Es la identidad del archivo: el frontend lo usa para construir
            la URL publica /images/{hash}.
        mime (str): Tipo MIME real detectado por magic bytes, NO el
            Content-Type enviado por el cliente.
        size (int): Tamano del archivo en bytes.
        duplicate (bool): True si el archivo ya existia. La subida igual es
            exitosa (idempotente); solo cambia el codigo HTTP (200 vs 201).
    """
    hash: str
    mime: str
    size: int
    duplicate: bool


class ErrorResponse(BaseModel):
    """
    Schema estandar para respuestas de error.

    Ejemplos de `detail`:
        "File size exceeds 25MB limit"
        "File type 'application/x-dosexec' is not allowed"
        "rate limited"
    """
    detail: str
