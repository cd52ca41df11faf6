"""
Modulo de almacenamiento direccionado por contenido.

Cada objeto se guarda bajo una ruta derivada del hash SHA-256 de sus bytes:

    images/{hash[0:2]}/{hash}

Consecuencias de este esquema:
- Los mismos bytes SIEMPRE producen la misma ruta (deduplicacion gratis).
- Un objeto nunca se modifica despues de creado: si los bytes cambiaran,
  cambiaria el hash y por lo tanto la ruta.

Commit atomico "crear si no existe"
-----------------------------------
Dos subidas identicas en paralelo pueden pasar al mismo tiempo la
verificacion "ya existe este hash?". Para que solo UNA escriba, la
operacion final es atomica en el propio backend:

- S3 / MinIO: put_object con IfNoneMatch="*". Si la key ya existe, S3
  responde 412 PreconditionFailed y tratamos la subida como duplicada.
- Sistema de archivos: escribimos en .quarantine/ y publicamos con
  os.link(). link() falla con FileExistsError si el destino ya existe,
  y esa verificacion la hace el kernel de forma atomica.

Patron de diseno: Inyeccion de dependencias
-------------------------------------------
Igual que el resto de servicios, S3ObjectStore acepta un `client` opcional:
en produccion se crea con boto3, en tests se pasa un cliente de moto o un
MagicMock.
"""

import os
import shutil
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from rib.config import settings
from rib.services.errors import StorageError
from rib.services.validator import sniff_mime

# Codigos con los que S3/MinIO indican que el objeto no existe.
_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}

# Put condicional rechazado porque la key ya existe.
_PRECONDITION_CODES = {"412", "PreconditionFailed"}

# Otra escritura condicional a la misma key sigue en curso. Esa escritura
# todavia puede fallar, asi que NO implica que el objeto exista.
_IN_FLIGHT_CODES = {"409", "ConditionalRequestConflict"}

QUARANTINE_DIR = ".quarantine"


class ObjectNotFound(LookupError):
    """No existe un objeto con ese hash."""


class ObjectStore(ABC):
    """Contrato minimo de un almacen direccionado por contenido."""

    @abstractmethod
    def exists(self, digest: str) -> bool:
        ...

    @abstractmethod
    def commit(self, digest: str, mime_type: str, spool: BinaryIO, size: int) -> bool:
        """
        Publica el contenido de `spool` bajo `digest` si aun no existe.

        Retorna:
            bool: True si este llamado creo el objeto, False si ya existia
                (incluido el caso de perder una carrera con otra subida).

        Raises:
            StorageError: Si el backend falla.
        """

    @abstractmethod
    def load(self, digest: str) -> tuple[bytes, str]:
        """Retorna (bytes, mime_type). Lanza ObjectNotFound si no existe."""


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def build_s3_client():
    """
    Crea el cliente boto3 para S3 o MinIO.

    MinIO (y la mayoria de endpoints locales) no tienen DNS comodin, asi que
    forzamos direccionamiento por ruta: http://minio:9000/bucket/key en vez
    de http://bucket.minio:9000/key.
    """
    kwargs = {
        "region_name": settings.S3_REGION,
        "config": Config(s3={"addressing_style": "path"}),
    }
    if settings.S3_ENDPOINT:
        kwargs["endpoint_url"] = settings.S3_ENDPOINT
    if settings.S3_ACCESS_KEY and settings.S3_SECRET_KEY:
        kwargs["aws_access_key_id"] = settings.S3_ACCESS_KEY
        kwargs["aws_secret_access_key"] = settings.S3_SECRET_KEY
    return boto3.client("s3", **kwargs)


class S3ObjectStore(ObjectStore):
    """
    Almacen sobre S3 / MinIO.

    Atributos:
        client: Cliente de boto3 para S3.
        bucket (str): Bucket donde viven los objetos.
        prefix (str): Prefijo de las keys ("images").
    """

    def __init__(self, client=None, bucket: str | None = None, prefix: str | None = None):
        self.client = client or build_s3_client()
        self.bucket = bucket or settings.S3_BUCKET
        self.prefix = prefix or settings.IMAGE_PREFIX

    def key_for(self, digest: str) -> str:
        return f"{self.prefix}/{digest[:2]}/{digest}"

    def ensure_bucket(self) -> None:
        """Crea el bucket si no existe. Se llama una vez al arrancar."""
        try:
            self.client.head_bucket(Bucket=self.bucket)
            return
        except ClientError as e:
            logger.warning(f"head_bucket failed for '{self.bucket}' (will attempt create): {e}")
        except BotoCoreError as e:
            raise StorageError(f"cannot reach storage for bucket '{self.bucket}': {e}") from e

        try:
            self.client.create_bucket(Bucket=self.bucket)
        except (ClientError, BotoCoreError) as e:
            hint = ""
            if self.client.meta.region_name not in (None, "us-east-1"):
                hint = " (non us-east-1 regions may need a CreateBucketConfiguration)"
            raise StorageError(f"failed to ensure bucket '{self.bucket}': {e}{hint}") from e
        logger.info(f"created bucket '{self.bucket}'")

    def exists(self, digest: str) -> bool:
        # head_object es un HTTP HEAD: solo headers, sin descargar el body.
        try:
            self.client.head_object(Bucket=self.bucket, Key=self.key_for(digest))
        except ClientError as e:
            if _error_code(e) in _MISSING_CODES:
                return False
            raise StorageError(f"head_object failed for {digest}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"head_object failed for {digest}: {e}") from e
        return True

    def commit(self, digest: str, mime_type: str, spool: BinaryIO, size: int) -> bool:
        # Camino rapido: si ya existe, ni siquiera enviamos el body.
        if self.exists(digest):
            return False

        key = self.key_for(digest)
        spool.seek(0)
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=spool,
                ContentLength=size,
                ContentType=mime_type,
                Metadata={"mime-type": mime_type},
                # Escritura condicional: solo si la key NO existe.
                IfNoneMatch="*",
            )
        except ClientError as e:
            code = _error_code(e)
            if code in _PRECONDITION_CODES:
                # Otra subida identica gano la carrera; su objeto es el nuestro.
                return False
            if code in _IN_FLIGHT_CODES:
                # Solo es duplicado si la escritura rival ya publico el objeto.
                if self.exists(digest):
                    return False
                raise StorageError(
                    f"concurrent write to {key} did not complete; retry the upload"
                ) from e
            message = str(e)
            hint = ""
            if "NoSuchBucket" in message:
                hint = " (bucket missing or not yet propagated)"
            elif "AccessDenied" in message:
                hint = " (check S3_ACCESS_KEY/S3_SECRET_KEY permissions)"
            logger.error(f"put_object failed hash={digest} key={key} bucket={self.bucket} err={e!r}")
            raise StorageError(f"{message}{hint}") from e
        except BotoCoreError as e:
            logger.error(f"put_object failed hash={digest} key={key} bucket={self.bucket} err={e!r}")
            raise StorageError(str(e)) from e
        return True

    def load(self, digest: str) -> tuple[bytes, str]:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=self.key_for(digest))
        except ClientError as e:
            if _error_code(e) in _MISSING_CODES:
                raise ObjectNotFound(digest) from e
            raise StorageError(f"get_object failed for {digest}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"get_object failed for {digest}: {e}") from e

        data = response["Body"].read()
        mime_type = (
            response.get("Metadata", {}).get("mime-type")
            or response.get("ContentType")
            or sniff_mime(data[: settings.SNIFF_BYTES])
        )
        return data, mime_type


class LocalObjectStore(ObjectStore):
    """
    Almacen sobre el sistema de archivos local.

    Estructura en disco:
        {root}/ab/abcdef...          -> objetos publicados
        {root}/.quarantine/{uuid}    -> escrituras en curso
    """

    def __init__(self, root: str | os.PathLike | None = None):
        self.root = Path(root or settings.LOCAL_STORAGE_ROOT)
        self.quarantine = self.root / QUARANTINE_DIR

    def path_for(self, digest: str) -> Path:
        return self.root / digest[:2] / digest

    def exists(self, digest: str) -> bool:
        return self.path_for(digest).is_file()

    def commit(self, digest: str, mime_type: str, spool: BinaryIO, size: int) -> bool:
        final = self.path_for(digest)
        if final.exists():
            return False

        try:
            final.parent.mkdir(parents=True, exist_ok=True)
            self.quarantine.mkdir(parents=True, exist_ok=True)
            tmp = self.quarantine / uuid.uuid4().hex
            try:
                spool.seek(0)
                with open(tmp, "wb") as out:
                    shutil.copyfileobj(spool, out)
                    out.flush()
                    os.fsync(out.fileno())
                try:
                    os.link(tmp, final)
                except FileExistsError:
                    return False
                return True
            finally:
                tmp.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"local commit failed hash={digest} path={final} err={e!r}")
            raise StorageError(f"cannot write {final}: {e}") from e

    def load(self, digest: str) -> tuple[bytes, str]:
        path = self.path_for(digest)
        try:
            data = path.read_bytes()
        except FileNotFoundError as e:
            raise ObjectNotFound(digest) from e
        except OSError as e:
            raise StorageError(f"cannot read {path}: {e}") from e
        return data, sniff_mime(data[: settings.SNIFF_BYTES])


def build_object_store() -> ObjectStore:
    """
    Fabrica del almacen configurado (STORAGE_BACKEND).

    Raises:
        ValueError: Si STORAGE_BACKEND no es "s3" ni "local".
    """
    backend = settings.STORAGE_BACKEND.lower()
    if backend == "s3":
        return S3ObjectStore()
    if backend == "local":
        return LocalObjectStore()
    raise ValueError(f"unknown STORAGE_BACKEND '{settings.STORAGE_BACKEND}' (expected 's3' or 'local')")
