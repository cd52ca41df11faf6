"""
Configuracion de logging con loguru.

Un solo handler a stdout en formato JSON (una linea por evento). El
orquestador de contenedores captura stdout, asi que no escribimos archivos
de log propios.
"""

import sys

from loguru import logger


def setup_logging(log_level: str = "INFO") -> None:
    """Reemplaza el handler por defecto de loguru por uno JSON en stdout."""
    logger.remove()
    logger.add(
        sys.stdout,
        level=log_level.upper(),
        format="{message}",
        serialize=True,
        backtrace=True,
        # diagnose=True imprimiria los valores de las variables en los
        # tracebacks (podria filtrar datos de usuarios).
        diagnose=False,
        colorize=False,
    )
