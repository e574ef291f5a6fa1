# nomenclador/services/selector.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AbstractSet, Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from .ambiguity import AmbiguityCache
from .common_names import CommonNameRecord, get_candidates_for_taxa

log = logging.getLogger(__name__)

# --------------------- Prioridad por fuente ---------------------
# menor = mejor. El título de Wikipedia manda; IUCN preferido va antes que el resto de IUCN.
SOURCE_PRIORITY = {
    "wikipedia_title": 1,
    "wikipedia_taxobox": 2,
    "wikidata_label": 3,
    "wikidata": 6,
    "col": 7,
}
IUCN_PREFERRED_PRIORITY = 4
IUCN_OTHER_PRIORITY = 5
UNKNOWN_PRIORITY = 99


def source_priority(source: Optional[str], is_preferred: bool = False) -> int:
    s = (source or "").lower()
    if s == "iucn":
        return IUCN_PREFERRED_PRIORITY if is_preferred else IUCN_OTHER_PRIORITY
    return SOURCE_PRIORITY.get(s, UNKNOWN_PRIORITY)


def candidate_sort_key(c: CommonNameRecord):
    return (source_priority(c.source, c.is_preferred), 0 if c.is_preferred else 1, c.raw_name.upper())


@dataclass(frozen=True)
class BestName:
    raw_name: str
    display_name: str
    normalized_name: str
    source: str
    is_preferred: bool
    is_ambiguous: bool


def _best(c: CommonNameRecord, ambiguous: bool) -> BestName:
    return BestName(
        raw_name=c.raw_name,
        display_name=c.display_name or c.raw_name,
        normalized_name=c.normalized_name,
        source=c.source,
        is_preferred=c.is_preferred,
        is_ambiguous=ambiguous,
    )


def rank_candidates(candidates: Iterable[CommonNameRecord]) -> List[CommonNameRecord]:
    return sorted(candidates, key=candidate_sort_key)


def select_best_name(
    candidates: Sequence[CommonNameRecord],
    ambiguous: AbstractSet[str],
    allow_ambiguous: bool = False,
) -> Optional[BestName]:
    """Elige el mejor nombre común entre los candidatos de un taxón.

    Orden: prioridad de fuente, preferido primero, luego alfabético sin
    distinguir mayúsculas (comparando en mayúsculas). Los ambiguos se saltan
    salvo `allow_ambiguous`, en cuyo caso gana el primero y se marca si es
    ambiguo.
    """
    ranked = rank_candidates(candidates)
    if not ranked:
        return None
    if allow_ambiguous:
        first = ranked[0]
        return _best(first, first.normalized_name in ambiguous)
    for c in ranked:
        if c.normalized_name not in ambiguous:
            return _best(c, False)
    return None


def get_best_name_for_taxon(
    db: Session,
    taxon_id: int,
    language: str = "en",
    allow_ambiguous: bool = False,
    cache: Optional[AmbiguityCache] = None,
) -> Optional[BestName]:
    """Mejor nombre de un taxón, sea cual sea su estado de validez."""
    return get_best_names_for_taxa(db, [taxon_id], language, allow_ambiguous, cache, valid_only=False).get(taxon_id)


def get_best_names_for_taxa(
    db: Session,
    taxon_ids: Iterable[int],
    language: str = "en",
    allow_ambiguous: bool = False,
    cache: Optional[AmbiguityCache] = None,
    valid_only: bool = True,
) -> Dict[int, Optional[BestName]]:
    """Versión por lotes: el conjunto ambiguo se calcula una vez y los candidatos en una consulta."""
    cache = cache if cache is not None else AmbiguityCache()
    ambiguous = cache.get(db, language)
    by_taxon = get_candidates_for_taxa(db, taxon_ids, language, valid_only=valid_only)
    out = {tid: select_best_name(cands, ambiguous, allow_ambiguous) for tid, cands in by_taxon.items()}
    if log.isEnabledFor(logging.DEBUG):
        log.debug("best-names: %d taxones, %d con nombre", len(out), sum(1 for v in out.values() if v))
    return out
