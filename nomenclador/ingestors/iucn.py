# nomenclador/ingestors/iucn.py
from __future__ import annotations

import logging
import threading
from typing import Dict, Iterator, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from ..services.ambiguity import AmbiguityCache
from ..services.normalize import (
    build_scientific_name_from_parts,
    determine_rank,
    matches_known_scientific_name,
    normalize_language_code,
    normalize_scientific_name,
)
from ..services.registry import find_by_source_id, insert_synonym, insert_synonym_variants, upsert_taxon
from .base import (
    CandidateName,
    Extracted,
    ExtractionResult,
    IngestStats,
    Lookup,
    ParseError,
    guarded,
    ledger_pass,
    load_json,
    run_candidate_pass,
)

log = logging.getLogger(__name__)

SOURCE = "iucn"

ASSESSMENTS_SQL = "SELECT sis_id, json FROM assessments WHERE json IS NOT NULL ORDER BY rowid"

TAXONOMY_SQL = """
SELECT v.internalTaxonId, v.scientificName, v."scientificName:1",
       v.genusName, v.speciesName, v.infraType, v.infraName, v.kingdomName
FROM view_assessments_html_taxonomy_html v
"""


def _str(d: Dict, *keys: str) -> Optional[str]:
    for k in keys:
        v = d.get(k)
        if isinstance(v, str) and v.strip():
            return v.strip()
    return None


def iter_assessments(cache: Engine) -> Iterator[Tuple[str, str]]:
    """(sis_id, json) sin repetir SIS id: gana la primera evaluación."""
    seen = set()
    with cache.connect() as conn:
        for sis_id, raw in conn.execute(text(ASSESSMENTS_SQL)):
            key = str(sis_id)
            if key in seen:
                continue
            seen.add(key)
            yield key, raw


# ---------- Extracción de nombres comunes ----------

def extract_common_names(payload: Tuple[str, str]) -> ExtractionResult:
    """Nombres comunes de una evaluación IUCN.

    Se leen de taxon.common_names (o common_names en la raíz); main=true marca
    el preferido. Se descartan los "Species code: ..." y los que repiten el
    propio nombre científico del registro.
    """
    sis_id, raw = payload
    try:
        doc = load_json(raw)
    except (ValueError, TypeError) as e:
        return ParseError(sis_id, f"JSON inválido: {e}")
    if not isinstance(doc, dict):
        return ParseError(sis_id, "JSON sin objeto raíz")

    taxon = doc.get("taxon") if isinstance(doc.get("taxon"), dict) else doc
    sci = _str(taxon, "scientific_name", "scientificName")
    genus = _str(taxon, "genus_name", "genusName")
    epithet = _str(taxon, "species_name", "speciesName")

    entries = taxon.get("common_names")
    if entries is None:
        entries = doc.get("common_names")

    candidates: List[CandidateName] = []
    for entry in entries if isinstance(entries, list) else []:
        if not isinstance(entry, dict):
            continue
        name = _str(entry, "name")
        if not name or name.lower().startswith("species code"):
            continue
        if matches_known_scientific_name(name, sci, genus, epithet):
            continue
        candidates.append(CandidateName(
            raw_name=name,
            source=SOURCE,
            language=normalize_language_code(_str(entry, "language") or "eng"),
            is_preferred=entry.get("main") is True,
            source_identifier=sis_id,
        ))

    return Extracted(
        record_id=sis_id,
        lookups=(Lookup("source_id", sis_id, SOURCE),),
        candidates=tuple(candidates),
    )


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
        iter_assessments(cache),
        extract_common_names,
        import_type="common_names_iucn",
        cache=ambiguity,
        cancel=cancel,
        limit=limit,
    )


# ---------- Sinónimos ----------

def extract_synonyms(raw) -> List[Tuple[str, str]]:
    """[(nombre normalizado, nombre original)] desde taxon.synonyms."""
    doc = load_json(raw)
    taxon = doc.get("taxon") if isinstance(doc, dict) else None
    syns = taxon.get("synonyms") if isinstance(taxon, dict) else None
    out: List[Tuple[str, str]] = []
    for entry in syns if isinstance(syns, list) else []:
        if not isinstance(entry, dict):
            continue
        name = _str(entry, "name")
        if not name:
            continue
        genus = _str(entry, "genus_name")
        species = _str(entry, "species_name")
        sci = f"{genus} {species}" if genus and species else name
        norm = normalize_scientific_name(sci)
        if norm:
            out.append((norm, name))
    return out


def ingest_synonyms(
    db: Session,
    cache: Engine,
    *,
    cancel: Optional[threading.Event] = None,
    limit: Optional[int] = None,
) -> IngestStats:
    with ledger_pass(db, "synonyms_iucn") as stats:
        for sis_id, raw in guarded(iter_assessments(cache), cancel, limit):
            stats.processed += 1
            taxon_id = find_by_source_id(db, SOURCE, sis_id)
            if taxon_id is None:
                stats.skipped_no_taxon += 1
                continue
            try:
                pairs = extract_synonyms(raw)
            except (ValueError, TypeError) as e:
                stats.error(sis_id, f"sinónimos ilegibles: {e}")
                continue
            stats.matched += 1
            for norm, original in pairs:
                if insert_synonym(db, taxon_id, norm, original, SOURCE, "synonym"):
                    stats.added += 1
    return stats


# ---------- Taxones (vista de taxonomía IUCN) ----------

def import_taxa(
    db: Session,
    taxonomy: Engine,
    *,
    cancel: Optional[threading.Event] = None,
    limit: Optional[int] = None,
) -> IngestStats:
    """Crea/actualiza taxones desde la vista de taxonomía (uno por internalTaxonId)."""
    seen = set()
    with ledger_pass(db, "taxa_iucn") as stats, taxonomy.connect() as conn:
        rows = conn.execute(text(TAXONOMY_SQL))
        for row in guarded(rows, cancel):
            taxon_key, sci_a, sci_t, genus, species, infra_type, infra_name, kingdom = row
            taxon_key = str(taxon_key)
            if taxon_key in seen:
                continue
            if limit is not None and stats.added >= limit:
                break
            seen.add(taxon_key)
            stats.processed += 1

            sci = (sci_t or sci_a or "").strip() or build_scientific_name_from_parts(genus, species, infra_name)
            canonical = normalize_scientific_name(sci)
            if canonical is None:
                stats.error(taxon_key, "sin nombre científico")
                continue

            rank = determine_rank(infra_type if infra_name else None, genus, species, infra_name)
            taxon_id = upsert_taxon(
                db,
                canonical_name=canonical,
                original_name=sci,
                rank=rank,
                kingdom=(kingdom or None),
                is_extinct=False,
                is_fossil=False,
                validity_status="valid",
                primary_source=SOURCE,
                primary_source_id=taxon_key,
            )
            insert_synonym_variants(db, taxon_id, genus, None, species, infra_name, infra_type)
            stats.added += 1
    return stats
