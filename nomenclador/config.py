# nomenclador/config.py
from __future__ import annotations

import os
from dotenv import load_dotenv

load_dotenv()


class ConfigError(RuntimeError):
    """Configuración ausente o inválida (se detecta antes de cualquier ingesta)."""


# ------ Base de datos principal ------
DATABASE_URL = os.getenv("DATABASE_URL")

# ------ Cachés de fuentes (SQLite de solo lectura) ------
IUCN_API_CACHE_PATH = os.getenv("IUCN_API_CACHE_PATH")
IUCN_DATABASE_PATH = os.getenv("IUCN_DATABASE_PATH")
WIKIDATA_CACHE_PATH = os.getenv("WIKIDATA_CACHE_PATH")
WIKIPEDIA_CACHE_PATH = os.getenv("WIKIPEDIA_CACHE_PATH")
COL_SQLITE_PATH = os.getenv("COL_SQLITE_PATH")

# ------ Reglas de mayúsculas ------
CAPS_FILE_PATH = os.getenv("CAPS_FILE_PATH", "rules/caps.txt")

# máximo de errores por registro que se escriben al log en cada pasada
INGEST_ERROR_LOG_LIMIT = int(os.getenv("INGEST_ERROR_LOG_LIMIT", "5"))

# API de consulta (opcional): si no hay clave, la API queda abierta
API_KEY = os.getenv("API_KEY", "")


def require_database_url(url: str | None = None) -> str:
    url = url or os.getenv("DATABASE_URL") or DATABASE_URL
    if not url:
        raise ConfigError("DATABASE_URL no configurada. Revise el archivo .env")
    return url
