"""
Lector en streaming del campo de archivo de un body multipart/form-data.

Por que no usamos request.form()?
---------------------------------
request.form() de Starlette lee el body COMPLETO (y lo escribe en un
archivo temporal) antes de devolver el control. Un archivo de 60 MB o un
script disfrazado de PNG se recibiria entero antes de poder rechazarlo.

Este lector usa el parser incremental de python-multipart: cada chunk que
llega de la red se pasa a feed(), que devuelve SOLO los bytes del campo de
archivo contenidos en ese chunk. La ruta los empuja al UploadCandidate en
el momento, asi el limite de tamano y la deteccion de tipo cortan la
lectura del body en cuanto fallan.

Ejemplo:
    reader = FilePartReader(boundary)
    async for chunk in request.stream():
        data = reader.feed(chunk)
        if data:
            candidate.feed(data)
    reader.close()
"""

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from rib.services.errors import StreamError

# Tope para los headers de cada parte (Content-Disposition, Content-Type).
MAX_PART_HEADER_BYTES = 16 * 1024


def multipart_boundary(content_type: str | None) -> bytes:
    """
    Extrae el boundary del header Content-Type.

    Raises:
        StreamError: Si el body no es multipart/form-data o no trae boundary.
    """
    media_type, params = parse_options_header(content_type or "")
    if media_type != b"multipart/form-data":
        raise StreamError("Expected a multipart/form-data body")
    boundary = params.get(b"boundary")
    if not boundary:
        raise StreamError("Missing multipart boundary")
    return boundary


class FilePartReader:
    """
    Extrae en streaming el PRIMER campo de archivo llamado `field_name`.

    Las demas partes (campos de texto, archivos extra) se descartan sin
    guardarlas en memoria.

    Atributos:
        found (bool): Ya aparecio la parte del archivo.
        finished (bool): La parte del archivo termino (boundary de cierre).
    """

    def __init__(self, boundary: bytes, field_name: str = "file"):
        self.field_name = field_name
        self.found = False
        self.finished = False
        self._in_target = False
        self._header_bytes = 0
        self._header_field = b""
        self._header_value = b""
        self._headers: dict[bytes, bytes] = {}
        self._data: list[bytes] = []
        self._parser = MultipartParser(
            boundary,
            callbacks={
                "on_part_begin": self._on_part_begin,
                "on_part_data": self._on_part_data,
                "on_part_end": self._on_part_end,
                "on_header_field": self._on_header_field,
                "on_header_value": self._on_header_value,
                "on_header_end": self._on_header_end,
                "on_headers_finished": self._on_headers_finished,
            },
        )

    def feed(self, chunk: bytes) -> bytes:
        """
        Procesa un chunk del body y retorna los bytes del archivo que
        contenia (b"" si el chunk era de otra parte o de los headers).

        Raises:
            StreamError: Si el body multipart esta mal formado.
        """
        try:
            self._parser.write(chunk)
        except MultipartParseError as e:
            raise StreamError(f"malformed multipart body: {e}") from e
        data = b"".join(self._data)
        self._data.clear()
        return data

    def close(self) -> None:
        """
        Verifica que el campo de archivo llego completo.

        Raises:
            StreamError: Si no hay campo de archivo o el body se corto a
                mitad del archivo.
        """
        try:
            self._parser.finalize()
        except MultipartParseError as e:
            raise StreamError(f"malformed multipart body: {e}") from e
        if not self.found:
            raise StreamError(f"Missing '{self.field_name}' field")
        if not self.finished:
            raise StreamError("upload truncated before the closing boundary")

    # ---------- Callbacks del parser ----------

    def _on_part_begin(self) -> None:
        self._headers = {}
        self._header_bytes = 0

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._count_header(end - start)
        self._header_field += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._count_header(end - start)
        self._header_value += data[start:end]

    def _on_header_end(self) -> None:
        self._headers[self._header_field.lower()] = self._header_value
        self._header_field = b""
        self._header_value = b""

    def _on_headers_finished(self) -> None:
        _, options = parse_options_header(self._headers.get(b"content-disposition", b""))
        name = options.get(b"name", b"").decode("latin-1")
        # Solo una parte con filename es un archivo (igual que UploadFile).
        is_file = b"filename" in options
        if not self.found and is_file and name == self.field_name:
            self.found = True
            self._in_target = True

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        if self._in_target:
            self._data.append(data[start:end])

    def _on_part_end(self) -> None:
        if self._in_target:
            self._in_target = False
            self.finished = True

    def _count_header(self, n: int) -> None:
        self._header_bytes += n
        if self._header_bytes > MAX_PART_HEADER_BYTES:
            raise StreamError("multipart part headers too large")
