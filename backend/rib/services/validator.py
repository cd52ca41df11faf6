"""
Modulo de deteccion de tipo de archivo (magic-number sniffing).

No confiamos en el Content-Type del request HTTP ni en la extension del
nombre de archivo: el cliente puede enviar lo que quiera. Un atacante podria
subir un HTML con scripts etiquetado como "image/png". Por eso usamos
python-magic, que compara los primeros bytes del archivo (su "firma")
contra la base de datos de libmagic, la misma que usa el comando `file`.

Firmas de ejemplo:
    - PNG:  89 50 4E 47 0D 0A 1A 0A
    - JPEG: FF D8 FF
    - GIF:  "GIF87a" / "GIF89a"
    - PDF:  "%PDF"
    - WebP: "RIFF" .... "WEBP"

Solo necesitamos la CABECERA del archivo, no el archivo completo. El
pipeline de subida acumula los primeros `SNIFF_BYTES` bytes, llama a
sniff_mime() una sola vez, y puede rechazar el archivo sin leer el resto.
"""

import magic

from rib.config import settings


def sniff_mime(head: bytes) -> str:
    """
    Detecta el tipo MIME real a partir de los primeros bytes.

    Parametros:
        head (bytes): Cabecera del archivo (idealmente SNIFF_BYTES bytes,
            o el archivo completo si es mas corto).

    Retorna:
        str: Tipo MIME segun libmagic (ej: "image/png"). Un buffer vacio
            produce "application/x-empty".
    """
    return magic.from_buffer(head, mime=True)


def is_allowed(mime_type: str, allowed: dict[str, str] | None = None) -> bool:
    """Indica si un tipo MIME detectado esta en la lista blanca."""
    table = settings.ALLOWED_MIME_TYPES if allowed is None else allowed
    return mime_type in table
