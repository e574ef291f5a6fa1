# nomenclador/db.py
from __future__ import annotations

import logging
import os
from functools import lru_cache

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .config import ConfigError, require_database_url

log = logging.getLogger(__name__)


def _sqlite_pragmas(dbapi_conn, _record):
    # WAL: los lectores ven una instantánea mientras la ingesta escribe
    cur = dbapi_conn.cursor()
    try:
        cur.execute("PRAGMA journal_mode=WAL")
        cur.execute("PRAGMA foreign_keys=ON")
    finally:
        cur.close()


def make_engine(url: str | None = None, echo: bool = False) -> Engine:
    """Crea el engine de la base principal.

    Solo SQLite activa los PRAGMA; otros motores se usan tal cual.
    """
    url = require_database_url(url)
    kwargs = {"future": True, "echo": echo}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs.update(pool_pre_ping=True, pool_recycle=280)
    engine = create_engine(url, **kwargs)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _sqlite_pragmas)
    if log.isEnabledFor(logging.DEBUG):
        log.debug("engine creado para %s", engine.url.render_as_string(hide_password=True))
    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def init_db(engine: Engine) -> None:
    """Crea las tablas que falten (idempotente)."""
    from .models import Base

    Base.metadata.create_all(engine)


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return make_engine()


def get_session() -> Session:
    return make_session_factory(get_engine())()


def open_readonly_cache(path: str | None, label: str) -> Engine | None:
    """Abre un caché SQLite externo en modo solo lectura.

    Devuelve None (y avisa) si la ruta no existe; la fuente se omite.
    """
    if not path:
        log.warning("Caché %s sin ruta configurada; se omite la fuente", label)
        return None
    if not os.path.exists(path):
        log.warning("Caché %s no encontrado en %s; se omite la fuente", label, path)
        return None
    abspath = os.path.abspath(path)
    return create_engine(
        f"sqlite:///file:{abspath}?mode=ro&uri=true",
        future=True,
    )


__all__ = [
    "ConfigError",
    "make_engine",
    "make_session_factory",
    "init_db",
    "get_engine",
    "get_session",
    "open_readonly_cache",
]
