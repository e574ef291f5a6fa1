# nomenclador/ingestors/col.py
from __future__ import annotations

import threading
from typing import Iterator, NamedTuple, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from ..services.ambiguity import AmbiguityCache
from ..services.normalize import normalize_language_code, normalize_scientific_name
from ..services.registry import insert_synonym
from .base import (
    CandidateName,
    Extracted,
    ExtractionResult,
    IngestStats,
    Lookup,
    ParseError,
    guarded,
    ledger_pass,
    resolve_taxon,
    run_candidate_pass,
)

SOURCE = "col"
RANKS = ("species", "subspecies", "variety")

VERNACULAR_SQL = """
SELECT v.taxonID, v.name, v.language, v.preferred, n.scientificName
FROM vernacularname v
JOIN nameusage n ON v.taxonID = n.ID
WHERE v.language LIKE 'en%'
  AND v.name IS NOT NULL AND v.name != ''
  AND n.status = 'accepted'
  AND (n.rank IS NULL OR n.rank IN ('species', 'subspecies', 'variety'))
ORDER BY v.rowid
"""

SYNONYMS_SQL = """
SELECT s.ID, s.scientificName, s.status, a.scientificName, a.ID
FROM nameusage s
JOIN nameusage a ON s.parentID = a.ID
WHERE s.status IN ('synonym', 'ambiguous synonym')
  AND a.status = 'accepted'
  AND s.rank IN ('species', 'subspecies', 'variety')
ORDER BY s.rowid
"""


class VernacularRow(NamedTuple):
    taxon_id: str
    name: str
    language: Optional[str]
    preferred: Optional[str]
    scientific_name: Optional[str]


def iter_vernacular(cache: Engine) -> Iterator[VernacularRow]:
    with cache.connect() as conn:
        for row in conn.execute(text(VERNACULAR_SQL)):
            yield VernacularRow(str(row[0]), row[1], row[2], row[3], row[4])


def extract_common_names(row: VernacularRow) -> ExtractionResult:
    """Una fila de vernacularname: se busca por nombre científico y luego por ID de COL."""
    if not isinstance(row.name, str):
        return ParseError(row.taxon_id, "nombre vernáculo no textual")
    lookups = []
    if row.scientific_name:
        lookups.append(Lookup("scientific_name", row.scientific_name))
    lookups.append(Lookup("source_id", row.taxon_id, SOURCE))

    preferred = str(row.preferred or "").strip().lower() == "true"
    cand = CandidateName(
        raw_name=row.name,
        source=SOURCE,
        language=normalize_language_code(row.language),
        is_preferred=preferred,
        source_identifier=row.taxon_id,
    )
    return Extracted(record_id=row.taxon_id, lookups=tuple(lookups), candidates=(cand,))


def ingest_common_names(
    db: Session,
    cache: Engine,
    *,
    ambiguity: Optional[AmbiguityCache] = None,
    cancel: Optional[threading.Event] = None,
    limit: Optional[int] = None,
) -> IngestStats:
    return run_candidate_pass(
        db,
        SOURCE,
        iter_vernacular(cache),
        extract_common_names,
        import_type="common_names_col",
        cache=ambiguity,
        cancel=cancel,
        limit=limit,
    )


def ingest_synonyms(
    db: Session,
    cache: Engine,
    *,
    cancel: Optional[threading.Event] = None,
    limit: Optional[int] = None,
) -> IngestStats:
    """Sinónimos de COL cuyo nombre aceptado ya existe entre nuestros taxones."""
    with ledger_pass(db, "synonyms_col") as stats, cache.connect() as conn:
        for syn_id, syn_name, status, accepted_name, accepted_id in guarded(
            conn.execute(text(SYNONYMS_SQL)), cancel, limit
        ):
            stats.processed += 1
            norm_syn = normalize_scientific_name(syn_name)
            if norm_syn is None or normalize_scientific_name(accepted_name) is None:
                continue
            taxon_id, _ = resolve_taxon(
                db,
                (Lookup("scientific_name", accepted_name), Lookup("source_id", str(accepted_id), SOURCE)),
            )
            if taxon_id is None:
                stats.skipped_no_taxon += 1
                continue
            stats.matched += 1
            kind = "ambiguous_synonym" if status == "ambiguous synonym" else "synonym"
            if insert_synonym(db, taxon_id, norm_syn, syn_name.strip(), SOURCE, kind):
                stats.added += 1
    return stats
