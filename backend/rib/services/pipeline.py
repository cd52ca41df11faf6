"""
Modulo del pipeline de subida de archivos.

Recibe un stream de bytes (el archivo subido) y produce la identidad
estable del objeto almacenado: (hash, tipo MIME, tamano, duplicado?).

Flujo por cada chunk leido del stream:

    chunk -> verificar tamano acumulado -> (si aun no hay tipo) acumular
          cabecera y detectar tipo -> actualizar hash -> escribir en spool

Al terminar el stream:

    hash final -> almacen.commit(hash) -> nuevo (duplicate=False)
                                       -> ya existia (duplicate=True)

Orden de validacion (fail fast)
-------------------------------
1. Tamano: se verifica con CADA chunk, no al final. Un archivo de 10 GB se
   rechaza apenas cruza el limite, sin leer ni hashear el resto.
2. Tipo: solo necesita los primeros SNIFF_BYTES bytes. Un ejecutable se
   rechaza antes de leer el resto del stream.
3. Hash: SHA-256 incremental (hashlib), nunca sobre el archivo completo en
   memoria.

Limpieza garantizada
--------------------
Los bytes recibidos se escriben en un SpooledTemporaryFile (en memoria
hasta 1 MB, luego en disco). UploadCandidate es un context manager: el
spool se cierra (y el archivo temporal se borra) en TODOS los caminos de
salida, incluidos TooLarge, UnsupportedType, StreamError y StorageError.
"""

import hashlib
import tempfile
from dataclasses import dataclass
from typing import BinaryIO

from loguru import logger

from rib.config import settings
from rib.services.errors import StreamError, TooLarge, UnsupportedType
from rib.services.storage import ObjectStore, build_object_store
from rib.services.validator import is_allowed, sniff_mime

# Bytes que el spool mantiene en memoria antes de pasar a disco.
SPOOL_MEMORY_LIMIT = 1024 * 1024


@dataclass(frozen=True)
class StoredObjectRef:
    """
    Referencia al objeto almacenado, lista para que el handler la guarde en
    su propia fila (hilo, respuesta o imagen).

    Atributos:
        hash (str): SHA-256 en hexadecimal (64 caracteres).
        mime_type (str): Tipo detectado por magic bytes.
        size (int): Tamano en bytes.
        duplicate (bool): True si el objeto ya existia y no se escribio nada.
    """
    hash: str
    mime_type: str
    size: int
    duplicate: bool


class UploadCandidate:
    """
    Estado transitorio de UNA subida. Nunca se persiste directamente.

    Uso:
        with UploadCandidate(max_size, sniff_bytes, allowed) as candidate:
            candidate.feed(chunk)
            ...
            digest = candidate.finish()
    """

    def __init__(self, max_size: int, sniff_bytes: int, allowed: dict[str, str]):
        self.max_size = max_size
        self.sniff_bytes = sniff_bytes
        self.allowed = allowed
        self.size = 0
        self.mime_type: str | None = None
        self._hasher = hashlib.sha256()
        self._head = bytearray()
        self.spool = tempfile.SpooledTemporaryFile(max_size=SPOOL_MEMORY_LIMIT)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.spool.close()
        return False

    def feed(self, chunk: bytes) -> None:
        """
        Procesa un chunk del stream.

        Raises:
            TooLarge: Si el tamano acumulado supera max_size.
            UnsupportedType: Si la cabecera ya esta completa y su tipo no
                esta permitido.
        """
        self.size += len(chunk)
        if self.size > self.max_size:
            raise TooLarge(self.max_size)

        if self.mime_type is None:
            missing = self.sniff_bytes - len(self._head)
            self._head += chunk[:missing]
            if len(self._head) >= self.sniff_bytes:
                self._sniff()

        self._hasher.update(chunk)
        self.spool.write(chunk)

    def finish(self) -> str:
        """
        Cierra la subida y retorna el hash en hexadecimal.

        Un archivo mas corto que SNIFF_BYTES se detecta aqui, con todos sus
        bytes.
        """
        if self.mime_type is None:
            self._sniff()
        self.spool.flush()
        return self._hasher.hexdigest()

    def _sniff(self) -> None:
        mime_type = sniff_mime(bytes(self._head))
        self._head = bytearray()
        if not is_allowed(mime_type, self.allowed):
            raise UnsupportedType(mime_type)
        self.mime_type = mime_type


class UploadPipeline:
    """
    Orquesta una subida: lectura en streaming, validacion, hash y commit.

    Parametros:
        store (ObjectStore): Almacen direccionado por contenido.
        max_size (int): Techo de tamano en bytes.
        sniff_bytes (int): Bytes de cabecera usados para detectar el tipo.
        chunk_size (int): Tamano de cada lectura del stream.
        allowed (dict[str, str]): Lista blanca de tipos MIME.
    """

    def __init__(
        self,
        store: ObjectStore,
        max_size: int | None = None,
        sniff_bytes: int | None = None,
        chunk_size: int | None = None,
        allowed: dict[str, str] | None = None,
    ):
        self.store = store
        self.max_size = settings.MAX_FILE_SIZE if max_size is None else max_size
        self.sniff_bytes = settings.SNIFF_BYTES if sniff_bytes is None else sniff_bytes
        self.chunk_size = settings.CHUNK_SIZE if chunk_size is None else chunk_size
        self.allowed = settings.ALLOWED_MIME_TYPES if allowed is None else allowed

    def candidate(self, declared_size: int | None = None) -> UploadCandidate:
        """
        Abre una subida nueva para alimentarla chunk a chunk (feed).

        La ruta HTTP la usa directamente: empuja los bytes del multipart a
        medida que llegan de la red, asi TooLarge y UnsupportedType cortan
        la lectura del body en cuanto se detectan.

        Raises:
            TooLarge: Si `declared_size` ya excede el limite.
        """
        if declared_size is not None and declared_size > self.max_size:
            raise TooLarge(self.max_size)
        return UploadCandidate(self.max_size, self.sniff_bytes, self.allowed)

    def publish(self, candidate: UploadCandidate) -> StoredObjectRef:
        """
        Cierra la subida y la publica en el almacen.

        Raises:
            UnsupportedType: Si el archivo era mas corto que SNIFF_BYTES y su
                tipo no esta permitido.
            StorageError: Si el backend falla.
        """
        digest = candidate.finish()
        created = self.store.commit(digest, candidate.mime_type, candidate.spool, candidate.size)
        ref = StoredObjectRef(
            hash=digest,
            mime_type=candidate.mime_type,
            size=candidate.size,
            duplicate=not created,
        )
        logger.info(
            f"upload stored hash={ref.hash} mime={ref.mime_type} size={ref.size} duplicate={ref.duplicate}"
        )
        return ref

    def ingest(self, stream: BinaryIO, declared_size: int | None = None) -> StoredObjectRef:
        """
        Ingiere un archivo completo desde `stream`.

        Parametros:
            stream (BinaryIO): Objeto con metodo read(n) (archivo, BytesIO,
                el .file de un UploadFile de FastAPI).
            declared_size (int | None): Content-Length declarado por el
                cliente. Solo sirve para rechazar ANTES de leer; nunca se usa
                para aceptar (el tamano real se cuenta byte a byte).

        Retorna:
            StoredObjectRef: Identidad del objeto (nuevo o duplicado).

        Raises:
            TooLarge, UnsupportedType, StreamError, StorageError.
        """
        with self.candidate(declared_size) as candidate:
            while True:
                try:
                    chunk = stream.read(self.chunk_size)
                except (OSError, ValueError) as e:
                    # OSError: fallo de I/O o desconexion del cliente.
                    # ValueError: lectura sobre un archivo ya cerrado.
                    raise StreamError(f"failed reading upload stream: {e}") from e
                if not chunk:
                    break
                candidate.feed(chunk)

            return self.publish(candidate)

    def load(self, digest: str) -> tuple[bytes, str]:
        return self.store.load(digest)


# Instancia global del pipeline (Singleton implicito), igual que la
# configuracion. En tests se reemplaza con patch() por un pipeline sobre un
# LocalObjectStore en un directorio temporal.
upload_pipeline = UploadPipeline(build_object_store())
