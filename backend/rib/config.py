"""
Modulo de configuracion centralizada de la aplicacion.

Este archivo define TODAS las constantes y configuraciones que el backend
necesita: limites de tasa por accion, limites de subida de archivos, la
tabla de tipos MIME permitidos y los datos de conexion al almacenamiento.

Todas las variables se leen del entorno (os.getenv) para que la misma
imagen de contenedor corra en desarrollo, staging y produccion sin cambiar
el codigo fuente.

Patron de diseno utilizado: **Singleton implicito**
La instancia `settings` se crea UNA sola vez al importar este modulo.
Cada archivo que haga `from rib.config import settings` recibe la MISMA
instancia.

Validacion al arranque
----------------------
Una regla de rate limiting mal configurada (limite 0, ventana negativa,
accion sin regla) es un error de PROGRAMACION, no un error de runtime.
Por eso `load_rate_limit_config()` lanza `RateLimitConfigError` cuando se
construye la aplicacion, y nunca durante una peticion.
"""

import os

from rib.services.rate_limiter import RateLimitConfigError, RateLimitRule, Scope


def _env_int(name: str, default: int) -> int:
    """
    Lee una variable de entorno entera.

    Si la variable no existe usamos el valor por defecto. Si existe pero no
    es un entero, es un error de configuracion: lanzamos ValueError al
    importar este modulo y la aplicacion no arranca.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """
    Clase que encapsula toda la configuracion de la aplicacion.

    Usamos una clase (en vez de variables globales sueltas) para agrupar la
    configuracion y para que los tests puedan crear instancias con valores
    propios.
    """

    # ---------- Rate limiting de escritura ----------

    # Interruptor global. Con RL_ENABLED=false el limitador no registra nada
    # y siempre responde "permitido" (camino de costo cero).
    RL_ENABLED: bool = _env_bool("RL_ENABLED", False)

    # Reglas por accion: (limite, ventana en segundos).
    # Crear hilos es lo mas restringido: 1 hilo cada 5 minutos por IP.
    RL_THREAD_LIMIT: int = _env_int("RL_THREAD_LIMIT", 1)
    RL_THREAD_WINDOW: int = _env_int("RL_THREAD_WINDOW", 300)
    RL_REPLY_LIMIT: int = _env_int("RL_REPLY_LIMIT", 10)
    RL_REPLY_WINDOW: int = _env_int("RL_REPLY_WINDOW", 60)
    RL_IMAGE_LIMIT: int = _env_int("RL_IMAGE_LIMIT", 5)
    RL_IMAGE_WINDOW: int = _env_int("RL_IMAGE_WINDOW", 3600)

    # Limite grueso para lecturas publicas (GET /images/{hash}).
    # Usa la sintaxis de SlowAPI/limits: "N/periodo".
    RL_READ_LIMIT: str = os.getenv("RL_READ_LIMIT", "120/minute")

    # ---------- Limites de archivos ----------

    # Tamano maximo de archivo permitido: 25 MB.
    #   25 MB * 1024 KB/MB * 1024 bytes/KB = 26,214,400 bytes
    MAX_FILE_SIZE: int = 25 * 1024 * 1024  # 25 MB

    # Cuantos bytes iniciales le damos a libmagic para detectar el tipo.
    # Los formatos que aceptamos se reconocen en los primeros cientos de
    # bytes; 8 KB deja margen para contenedores como MP4 o WebM.
    SNIFF_BYTES: int = _env_int("SNIFF_BYTES", 8192)

    # Tamano de cada lectura del stream de entrada (64 KB).
    CHUNK_SIZE: int = _env_int("CHUNK_SIZE", 64 * 1024)

    # ---------- Tipos MIME permitidos ----------

    # Lista blanca: tipo MIME detectado por magic bytes -> extension canonica.
    # Las claves son los nombres que devuelve libmagic (python-magic), que a
    # veces difieren del nombre IANA: libmagic reporta "audio/x-wav" para WAV
    # y, en versiones antiguas, "image/x-ms-bmp" para BMP. Por eso ambos
    # aparecen aqui.
    #
    # SEGURIDAD: SVG y HTML NO estan en la lista. Son texto que el navegador
    # ejecuta (scripts embebidos), y servirlos desde nuestro dominio abriria
    # la puerta a XSS. Tampoco aceptamos "application/octet-stream": si no
    # sabemos que es, no entra.
    ALLOWED_MIME_TYPES: dict[str, str] = {
        # Imagenes
        "image/png": ".png",
        "image/jpeg": ".jpg",
        "image/gif": ".gif",
        "image/webp": ".webp",
        "image/bmp": ".bmp",
        "image/x-ms-bmp": ".bmp",
        "image/tiff": ".tiff",
        # Video
        "video/mp4": ".mp4",
        "video/webm": ".webm",
        # Audio
        "audio/mpeg": ".mp3",
        "audio/ogg": ".ogg",
        "audio/flac": ".flac",
        "audio/x-wav": ".wav",
        "audio/wav": ".wav",
        # Documentos
        "application/pdf": ".pdf",
    }

    # ---------- Almacenamiento ----------

    # "s3" (MinIO o AWS S3) o "local" (sistema de archivos, util en
    # desarrollo y en tests).
    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "s3")

    S3_BUCKET: str = os.getenv("S3_BUCKET", "rib-images")
    # Endpoint de MinIO (ej: "http://minio:9000"). Si no se define, boto3
    # usa el endpoint publico de AWS para la region.
    S3_ENDPOINT: str | None = os.getenv("S3_ENDPOINT")
    S3_REGION: str = os.getenv("S3_REGION", "us-east-1")
    S3_ACCESS_KEY: str = os.getenv("S3_ACCESS_KEY", "")
    S3_SECRET_KEY: str = os.getenv("S3_SECRET_KEY", "")

    # Prefijo de los objetos. Cada key queda como:
    #   images/{hash[0:2]}/{hash}
    # Los dos primeros caracteres del hash reparten los objetos en 256
    # "carpetas" para no tener millones de archivos en un solo directorio.
    IMAGE_PREFIX: str = "images"

    LOCAL_STORAGE_ROOT: str = os.getenv("LOCAL_STORAGE_ROOT", "./data/images")

    # Archivos de cuarentena mas viejos que esto (segundos) se consideran
    # abandonados por un proceso que murio a mitad de una subida.
    QUARANTINE_MAX_AGE: int = _env_int("QUARANTINE_MAX_AGE", 3600)

    # ---------- Aplicacion ----------

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    CORS_ORIGINS: list[str] = os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")


def load_rate_limit_config(config: Settings | None = None) -> dict[Scope, RateLimitRule]:
    """
    Construye y valida la tabla de reglas de rate limiting.

    Parametros:
        config (Settings | None): Configuracion a usar. Por defecto, la
            instancia global `settings`.

    Retorna:
        dict[Scope, RateLimitRule]: Una regla por cada accion conocida.

    Raises:
        RateLimitConfigError: Si alguna regla tiene limite < 1 o ventana <= 0.
    """
    config = config or settings
    rules = {
        Scope.CREATE_THREAD: RateLimitRule(config.RL_THREAD_LIMIT, float(config.RL_THREAD_WINDOW)),
        Scope.CREATE_REPLY: RateLimitRule(config.RL_REPLY_LIMIT, float(config.RL_REPLY_WINDOW)),
        Scope.UPLOAD_FILE: RateLimitRule(config.RL_IMAGE_LIMIT, float(config.RL_IMAGE_WINDOW)),
    }
    for scope, rule in rules.items():
        if rule.limit < 1:
            raise RateLimitConfigError(f"{scope.value}: limit must be >= 1 (got {rule.limit})")
        if rule.window <= 0:
            raise RateLimitConfigError(f"{scope.value}: window must be > 0 (got {rule.window})")
    return rules


# Instancia unica de configuracion (patron Singleton implicito).
settings = Settings()
