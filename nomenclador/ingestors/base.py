# nomenclador/ingestors/base.py
from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from ..config import INGEST_ERROR_LOG_LIMIT
from ..services.ambiguity import AmbiguityCache
from ..services.common_names import upsert_common_name
from ..services.normalize import (
    looks_like_scientific_name,
    normalize_common_name_for_matching,
    normalize_scientific_name,
)
from ..services.registry import (
    find_by_canonical_name,
    find_by_source_id,
    find_taxon_by_synonym,
    insert_cross_reference,
)
from ..services.runs import begin_run, complete_run

log = logging.getLogger(__name__)


class IngestCancelled(RuntimeError):
    """La pasada se canceló entre filas; la transacción se revierte."""


# ---------- Resultado de extracción ----------

@dataclass(frozen=True)
class CandidateName:
    raw_name: str
    source: str
    language: str = "en"
    is_preferred: bool = False
    source_identifier: Optional[str] = None


@dataclass(frozen=True)
class Lookup:
    """Un paso de resolución de taxón.

    kind='source_id' busca (source, value) en taxa.primary_source*;
    kind='scientific_name' busca por nombre canónico y luego en sinónimos.
    """

    kind: str
    value: str
    source: Optional[str] = None


@dataclass(frozen=True)
class Extracted:
    record_id: str
    lookups: Tuple[Lookup, ...]
    candidates: Tuple[CandidateName, ...] = ()


@dataclass(frozen=True)
class ParseError:
    record_id: str
    message: str


ExtractionResult = Union[Extracted, ParseError]
Extractor = Callable[[Any], ExtractionResult]


def load_json(raw) -> Any:
    """Acepta texto o bytes JSON, o un dict ya decodificado."""
    if isinstance(raw, (dict, list)):
        return raw
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    return json.loads(raw)


# ---------- Contadores ----------

@dataclass
class IngestStats:
    processed: int = 0
    added: int = 0
    errors: int = 0
    skipped_no_taxon: int = 0
    matched: int = 0
    notes: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, int]:
        return {
            "processed": self.processed,
            "added": self.added,
            "errors": self.errors,
            "skipped_no_taxon": self.skipped_no_taxon,
            "matched": self.matched,
        }

    def summary_notes(self) -> Optional[str]:
        parts = list(self.notes)
        if self.skipped_no_taxon:
            parts.append(f"Omitidos {self.skipped_no_taxon} registros sin taxón coincidente")
        return "; ".join(parts) or None

    def error(self, record_id: str, message: str, limit: int = INGEST_ERROR_LOG_LIMIT) -> None:
        self.errors += 1
        if self.errors <= limit:
            log.warning("Registro %s con error: %s", record_id, message)
        elif self.errors == limit + 1:
            log.warning("Demasiados errores; no se registran más en esta pasada")


# ---------- Corrida con bitácora ----------

@contextmanager
def ledger_pass(db: Session, import_type: str, cache: Optional[AmbiguityCache] = None) -> Iterator[IngestStats]:
    """Abre la corrida, ejecuta el cuerpo en una sola transacción y la cierra.

    Si el cuerpo lanza (error de almacenamiento o cancelación) la transacción
    se revierte y la corrida queda 'running' sin ended_at.
    """
    run_id = begin_run(db, import_type)
    stats = IngestStats()
    with db.begin():
        yield stats
    if cache is not None:
        cache.invalidate()
    complete_run(
        db,
        run_id,
        processed=stats.processed,
        added=stats.added,
        updated=0,
        errors=stats.errors,
        notes=stats.summary_notes(),
    )
    log.info("%s: %s", import_type, stats.as_dict())


def guarded(rows: Iterable, cancel: Optional[threading.Event] = None, limit: Optional[int] = None) -> Iterator:
    """Itera filas comprobando cancelación entre una y otra."""
    for i, row in enumerate(rows):
        if limit is not None and i >= limit:
            break
        if cancel is not None and cancel.is_set():
            raise IngestCancelled(f"cancelado tras {i} filas")
        yield row


# ---------- Resolución y guardado ----------

def resolve_taxon(db: Session, lookups: Iterable[Lookup]) -> Tuple[Optional[int], Optional[str]]:
    """Prueba los pasos en orden. Devuelve (taxon_id, match_type) o (None, None)."""
    for lk in lookups:
        if lk.kind == "source_id":
            tid = find_by_source_id(db, lk.source or "", lk.value)
            if tid is not None:
                return tid, "exact"
        elif lk.kind == "scientific_name":
            norm = normalize_scientific_name(lk.value)
            if norm is None:
                continue
            tid = find_by_canonical_name(db, norm)
            if tid is not None:
                return tid, "exact"
            tid = find_taxon_by_synonym(db, norm)
            if tid is not None:
                return tid, "synonym"
        else:
            raise ValueError(f"Tipo de búsqueda desconocido: {lk.kind!r}")
    return None, None


def store_candidate(db: Session, taxon_id: int, cand: CandidateName) -> bool:
    """Normaliza y guarda. False si el nombre es vacío o parece científico."""
    norm = normalize_common_name_for_matching(cand.raw_name)
    if norm is None:
        return False
    if looks_like_scientific_name(cand.raw_name):
        if log.isEnabledFor(logging.DEBUG):
            log.debug("Descartado por parecer nombre científico: %s", cand.raw_name)
        return False
    upsert_common_name(
        db,
        taxon_id=taxon_id,
        raw_name=cand.raw_name.strip(),
        normalized_name=norm,
        display_name=None,
        language=cand.language,
        source=cand.source,
        source_identifier=cand.source_identifier,
        is_preferred=cand.is_preferred,
    )
    return True


def run_candidate_pass(
    db: Session,
    source: str,
    payloads: Iterable[Any],
    extract: Extractor,
    *,
    import_type: Optional[str] = None,
    cache: Optional[AmbiguityCache] = None,
    cancel: Optional[threading.Event] = None,
    limit: Optional[int] = None,
) -> IngestStats:
    """Bucle común: extraer, resolver taxón, guardar candidatos.

    Un registro malo nunca aborta la pasada: ParseError suma a `errors` y se
    sigue con el siguiente.
    """
    with ledger_pass(db, import_type or f"common_names_{source}", cache) as stats:
        for payload in guarded(payloads, cancel, limit):
            stats.processed += 1
            result = extract(payload)
            if isinstance(result, ParseError):
                stats.error(result.record_id, result.message)
                continue

            taxon_id, match_type = resolve_taxon(db, result.lookups)
            if taxon_id is None:
                stats.skipped_no_taxon += 1
                continue
            stats.matched += 1
            insert_cross_reference(db, taxon_id, source, result.record_id, match_type or "exact")

            for cand in result.candidates:
                if store_candidate(db, taxon_id, cand):
                    stats.added += 1
    return stats
