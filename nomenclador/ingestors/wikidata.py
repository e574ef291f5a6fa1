# nomenclador/ingestors/wikidata.py
from __future__ import annotations

import threading
from typing import Any, Dict, Iterator, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from ..services.ambiguity import AmbiguityCache
from ..services.normalize import looks_like_scientific_name
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

SOURCE = "wikidata"
LABEL_SOURCE = "wikidata_label"

P_TAXON_NAME = "P225"
P_COMMON_NAME = "P1843"

ENTITIES_SQL = """
SELECT e.entity_id, e.json, GROUP_CONCAT(p.value) AS iucn_ids
FROM wikidata_entities e
LEFT JOIN wikidata_p627_values p ON p.entity_numeric_id = e.entity_numeric_id
WHERE e.json IS NOT NULL
GROUP BY e.entity_id
ORDER BY e.entity_id
"""


def iter_entities(cache: Engine) -> Iterator[Tuple[str, str, Optional[str]]]:
    with cache.connect() as conn:
        for entity_id, raw, iucn_ids in conn.execute(text(ENTITIES_SQL)):
            yield str(entity_id), raw, iucn_ids


def _claim_values(entity: Dict[str, Any], prop: str) -> List[Any]:
    out = []
    for claim in (entity.get("claims") or {}).get(prop) or []:
        try:
            value = claim["mainsnak"]["datavalue"]["value"]
        except (KeyError, TypeError):
            continue  # novalue / somevalue
        out.append(value)
    return out


def parse_entity(entity: Dict[str, Any]) -> Tuple[List[str], List[Tuple[str, str]], Optional[str]]:
    """(nombres científicos P225, [(texto, idioma)] de P1843, etiqueta en inglés)."""
    sci = [v.strip() for v in _claim_values(entity, P_TAXON_NAME) if isinstance(v, str) and v.strip()]
    common = []
    for v in _claim_values(entity, P_COMMON_NAME):
        if isinstance(v, dict) and isinstance(v.get("text"), str):
            common.append((v["text"], str(v.get("language") or "")))
    label = ((entity.get("labels") or {}).get("en") or {}).get("value")
    return sci, common, label if isinstance(label, str) else None


def extract_common_names(payload: Tuple[str, str, Optional[str]]) -> ExtractionResult:
    """Nombres de una entidad: P1843 en inglés y la etiqueta 'en'.

    La etiqueta se descarta si coincide con algún P225 o parece nombre científico.
    """
    entity_id, raw, iucn_ids = payload
    try:
        entity = load_json(raw)
    except (ValueError, TypeError) as e:
        return ParseError(entity_id, f"JSON inválido: {e}")
    if not isinstance(entity, dict):
        return ParseError(entity_id, "JSON sin objeto raíz")

    sci_names, common, label = parse_entity(entity)

    lookups = [Lookup("source_id", sis.strip(), "iucn") for sis in (iucn_ids or "").split(",") if sis.strip()]
    lookups += [Lookup("scientific_name", n) for n in sci_names]

    candidates: List[CandidateName] = [
        CandidateName(value.strip(), SOURCE, "en", False, entity_id)
        for value, lang in common
        if lang.lower().startswith("en") and value.strip()
    ]

    if label and label.strip():
        label = label.strip()
        same_as_sci = any(label.casefold() == n.casefold() for n in sci_names)
        if not same_as_sci and not looks_like_scientific_name(label):
            candidates.append(CandidateName(label, LABEL_SOURCE, "en", False, entity_id))

    return Extracted(record_id=entity_id, lookups=tuple(lookups), candidates=tuple(candidates))


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
        iter_entities(cache),
        extract_common_names,
        import_type="common_names_wikidata",
        cache=ambiguity,
        cancel=cancel,
        limit=limit,
    )
