"""
Script de limpieza de archivos de cuarentena abandonados.

El almacen local (STORAGE_BACKEND=local) escribe cada subida primero en
{LOCAL_STORAGE_ROOT}/.quarantine/{uuid} y despues la publica con os.link().
El propio proceso borra el archivo de cuarentena en todos los caminos de
salida, pero si el proceso MUERE a mitad de una escritura (OOM, SIGKILL,
reinicio del nodo) el archivo queda huerfano.

Este script borra los archivos de cuarentena con mas de QUARANTINE_MAX_AGE
segundos (1 hora por defecto). Esta pensado para un cron cada 15 minutos:

    */15 * * * * cd /ruta/proyecto && python scripts/sweep_quarantine.py

Es SEGURO ejecutarlo varias veces y en paralelo con la aplicacion: una
subida en curso tiene su archivo de cuarentena con pocos segundos de
antiguedad, muy por debajo del limite.

Uso:
    python scripts/sweep_quarantine.py [--root RUTA] [--max-age SEGUNDOS]
"""

import argparse
import time
from pathlib import Path

from loguru import logger

from rib.config import settings
from rib.services.storage import QUARANTINE_DIR


def sweep(root: Path, max_age: float, now: float | None = None) -> int:
    """
    Borra los archivos de {root}/.quarantine con mtime mas viejo que max_age.

    Parametros:
        root (Path): Raiz del almacen local.
        max_age (float): Edad maxima en segundos.
        now (float | None): Instante actual (time.time() por defecto).

    Retorna:
        int: Cantidad de archivos borrados.
    """
    quarantine = root / QUARANTINE_DIR
    if not quarantine.is_dir():
        return 0
    if now is None:
        now = time.time()

    removed = 0
    for entry in quarantine.iterdir():
        if not entry.is_file():
            continue
        try:
            age = now - entry.stat().st_mtime
            if age > max_age:
                entry.unlink()
                removed += 1
                logger.info(f"Deleted: {entry} (age: {age:.0f}s)")
        except FileNotFoundError:
            # El proceso dueno lo borro entre iterdir() y stat()/unlink().
            continue
    return removed


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Delete stale upload quarantine files.")
    parser.add_argument("--root", default=settings.LOCAL_STORAGE_ROOT)
    parser.add_argument("--max-age", type=float, default=settings.QUARANTINE_MAX_AGE)
    args = parser.parse_args()
    count = sweep(Path(args.root), args.max_age)
    logger.info(f"quarantine sweep finished removed={count}")
