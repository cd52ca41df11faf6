"""
Errores del pipeline de subida.

Cada tipo de error es distinto y no se solapa con los demas, para que la
capa HTTP pueda traducirlos a un codigo de estado sin inspeccionar mensajes:

    TooLarge         -> 413  (error del cliente: archivo demasiado grande)
    UnsupportedType  -> 415  (error del cliente: tipo no permitido)
    StreamError      -> 400  (fallo leyendo la entrada, ej: desconexion)
    StorageError     -> 500  (fallo del backend de almacenamiento)

Ninguno se reintenta dentro del pipeline: la politica de reintentos, si la
hay, pertenece al caller.
"""


class UploadError(Exception):
    """Clase base de todos los errores de subida."""

    status_code = 500
    # Etiqueta de la metrica uploads_total.
    outcome = "error"


class TooLarge(UploadError):
    status_code = 413
    outcome = "too_large"

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"File size exceeds {limit // (1024 * 1024)}MB limit")


class UnsupportedType(UploadError):
    status_code = 415
    outcome = "unsupported_type"

    def __init__(self, mime_type: str):
        self.mime_type = mime_type
        super().__init__(f"File type '{mime_type}' is not allowed")


class StreamError(UploadError):
    status_code = 400
    outcome = "stream_error"


class StorageError(UploadError):
    status_code = 500
    outcome = "storage_error"
