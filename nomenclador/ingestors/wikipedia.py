# nomenclador/ingestors/wikipedia.py
from __future__ import annotations

import logging
import threading
from typing import Iterator, List, NamedTuple, Optional

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import Session

from ..services.ambiguity import AmbiguityCache
from ..services.normalize import (
    clean_wiki_markup,
    normalize_common_name_for_matching,
    remove_disambiguation_suffix,
)
from .base import (
    CandidateName,
    Extracted,
    ExtractionResult,
    IngestStats,
    Lookup,
    ParseError,
    load_json,
    run_candidate_pass,
)

log = logging.getLogger(__name__)

SOURCE = "wikipedia"
TITLE_SOURCE = "wikipedia_title"
TAXOBOX_SOURCE = "wikipedia_taxobox"

MATCHED_SQL = """
SELECT m.taxon_identifier, p.page_title, t.data_json
FROM taxon_wiki_matches m
JOIN wiki_pages p ON p.id = m.page_row_id
LEFT JOIN wiki_taxobox_data t ON t.page_row_id = p.id
WHERE m.taxon_source = 'IUCN' AND m.match_status = 'matched'
ORDER BY p.id
"""

TAXOBOX_SQL = """
SELECT t.scientific_name, p.page_title, t.data_json
FROM wiki_taxobox_data t
JOIN wiki_pages p ON p.id = t.page_row_id
WHERE t.scientific_name IS NOT NULL AND t.scientific_name != ''
ORDER BY p.id
"""


class WikiPageRow(NamedTuple):
    # True: taxon_key es un SIS id de IUCN; False: nombre científico del taxobox
    by_iucn_id: bool
    taxon_key: str
    page_title: str
    taxobox_json: Optional[str]


def _has_matches(conn: Connection) -> bool:
    exists = conn.execute(
        text("SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'taxon_wiki_matches'")
    ).first()
    if not exists:
        return False
    return conn.execute(
        text("SELECT 1 FROM taxon_wiki_matches WHERE match_status = 'matched' LIMIT 1")
    ).first() is not None


def iter_pages(cache: Engine) -> Iterator[WikiPageRow]:
    """Usa los emparejamientos precalculados si existen; si no, el nombre del taxobox."""
    with cache.connect() as conn:
        by_id = _has_matches(conn)
        if not by_id:
            log.info("Sin taxon_wiki_matches: se empareja por nombre científico del taxobox")
        for key, title, data in conn.execute(text(MATCHED_SQL if by_id else TAXOBOX_SQL)):
            yield WikiPageRow(by_id, str(key), title, data)


def taxobox_common_name(data: dict) -> Optional[str]:
    name = data.get("name")
    if not isinstance(name, str):
        return None
    name = clean_wiki_markup(name)
    # binomio en cursiva
    if not name or "''" in name:
        return None
    return name


def extract_common_names(row: WikiPageRow) -> ExtractionResult:
    """Título del artículo (preferido) y campo 'name' del taxobox."""
    title = row.page_title
    if row.by_iucn_id:
        lookups = (Lookup("source_id", row.taxon_key.strip(), "iucn"),)
    else:
        lookups = (Lookup("scientific_name", clean_wiki_markup(row.taxon_key, strip_italics=True)),)

    data = {}
    if row.taxobox_json:
        try:
            data = load_json(row.taxobox_json)
        except (ValueError, TypeError) as e:
            return ParseError(title, f"taxobox ilegible: {e}")
        if not isinstance(data, dict):
            return ParseError(title, "taxobox sin objeto raíz")

    candidates: List[CandidateName] = []
    clean_title = remove_disambiguation_suffix(title)
    if clean_title:
        candidates.append(CandidateName(clean_title, TITLE_SOURCE, "en", True, title))

    box_name = taxobox_common_name(data)
    if box_name:
        box_norm = normalize_common_name_for_matching(box_name)
        if box_norm and box_norm != normalize_common_name_for_matching(clean_title):
            candidates.append(CandidateName(box_name, TAXOBOX_SOURCE, "en", False, title))

    return Extracted(record_id=title, lookups=lookups, candidates=tuple(candidates))


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
        iter_pages(cache),
        extract_common_names,
        import_type="common_names_wikipedia",
        cache=ambiguity,
        cancel=cancel,
        limit=limit,
    )
