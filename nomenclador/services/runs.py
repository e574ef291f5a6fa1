# nomenclador/services/runs.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from ..models import ImportRun, utcnow

log = logging.getLogger(__name__)

RUNNING = "running"
COMPLETED = "completed"


def begin_run(db: Session, import_type: str) -> int:
    """Abre una corrida en estado 'running' y la confirma en su propia transacción.

    Si el proceso muere antes de complete_run la fila queda 'running' con
    ended_at NULL; nunca se repara automáticamente.
    """
    run = ImportRun(import_type=import_type, started_at=utcnow(), status=RUNNING)
    db.add(run)
    db.flush()
    run_id = run.id
    db.commit()
    log.info("Corrida %s iniciada (%s)", run_id, import_type)
    return run_id


def complete_run(
    db: Session,
    run_id: int,
    processed: int = 0,
    added: int = 0,
    updated: int = 0,
    errors: int = 0,
    notes: Optional[str] = None,
) -> None:
    run = db.get(ImportRun, run_id)
    if run is None:
        raise LookupError(f"import_run {run_id} no existe")
    run.ended_at = utcnow()
    run.records_processed = processed
    run.records_added = added
    run.records_updated = updated
    run.errors = errors
    run.status = COMPLETED
    run.notes = notes
    db.commit()
    log.info(
        "Corrida %s completada: procesados=%d añadidos=%d actualizados=%d errores=%d",
        run_id, processed, added, updated, errors,
    )


def list_runs(db: Session, import_type: Optional[str] = None, limit: Optional[int] = 50) -> List[ImportRun]:
    stmt = select(ImportRun)
    if import_type:
        stmt = stmt.where(ImportRun.import_type == import_type)
    stmt = stmt.order_by(ImportRun.id.desc())
    if limit:
        stmt = stmt.limit(limit)
    return list(db.execute(stmt).scalars())


@dataclass(frozen=True)
class RunSummary:
    import_type: str
    last_ended_at: Optional[datetime]
    total_added: int
    has_completed: bool


def run_summaries(db: Session) -> List[RunSummary]:
    """Resumen por tipo: último fin, total añadido por corridas completas y si alguna terminó."""
    completed = ImportRun.status == COMPLETED
    stmt = (
        select(
            ImportRun.import_type,
            func.max(ImportRun.ended_at),
            func.coalesce(func.sum(case((completed, ImportRun.records_added), else_=0)), 0),
            func.max(case((completed, 1), else_=0)),
        )
        .group_by(ImportRun.import_type)
        .order_by(ImportRun.import_type)
    )
    return [
        RunSummary(t, ended, int(added or 0), bool(done))
        for t, ended, added, done in db.execute(stmt)
    ]
