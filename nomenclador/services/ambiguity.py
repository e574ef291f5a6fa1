# nomenclador/services/ambiguity.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..models import CommonName, Taxon

log = logging.getLogger(__name__)

WIKIPEDIA_SOURCES: Tuple[str, ...] = ("wikipedia_title", "wikipedia_taxobox")


@dataclass(frozen=True)
class AmbiguousName:
    normalized_name: str
    taxon_count: int


def _ambiguity_query(
    language: str,
    sources: Optional[Sequence[str]],
    preferred_only: bool,
    kingdom: Optional[str],
    include_fossil: bool = False,
):
    """GROUP BY nombre normalizado con más de un taxón válido (y no fósil, por defecto)."""
    n_taxa = func.count(func.distinct(CommonName.taxon_id))
    stmt = (
        select(CommonName.normalized_name, n_taxa.label("taxon_count"))
        .join(Taxon, Taxon.id == CommonName.taxon_id)
        .where(
            CommonName.language == language,
            Taxon.validity_status == "valid",
        )
    )
    if not include_fossil:
        stmt = stmt.where(Taxon.is_fossil.is_(False))
    if sources:
        stmt = stmt.where(CommonName.source.in_(list(sources)))
    if preferred_only:
        stmt = stmt.where(CommonName.is_preferred.is_(True))
    if kingdom:
        stmt = stmt.where(func.lower(Taxon.kingdom) == kingdom.lower())
    return stmt.group_by(CommonName.normalized_name).having(n_taxa > 1)


def compute_ambiguous_names(
    db: Session,
    language: str = "en",
    *,
    sources: Optional[Sequence[str]] = None,
    preferred_only: bool = False,
    kingdom: Optional[str] = None,
    include_fossil: bool = False,
) -> FrozenSet[str]:
    """Claves normalizadas que apuntan a 2+ taxones distintos.

    `sources` restringe las filas que cuentan (p. ej. solo Wikipedia) y
    `preferred_only` deja solo las marcadas como preferidas.
    """
    stmt = _ambiguity_query(language, sources, preferred_only, kingdom, include_fossil)
    return frozenset(name for name, _ in db.execute(stmt))


def list_ambiguous_names(
    db: Session,
    language: str = "en",
    *,
    sources: Optional[Sequence[str]] = None,
    preferred_only: bool = False,
    kingdom: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[AmbiguousName]:
    stmt = _ambiguity_query(language, sources, preferred_only, kingdom)
    stmt = stmt.order_by(func.count(func.distinct(CommonName.taxon_id)).desc(), CommonName.normalized_name)
    if limit:
        stmt = stmt.limit(limit)
    return [AmbiguousName(name, int(n)) for name, n in db.execute(stmt)]


def is_ambiguous(db: Session, normalized_name: str, language: str = "en") -> bool:
    stmt = (
        select(func.count(func.distinct(CommonName.taxon_id)))
        .join(Taxon, Taxon.id == CommonName.taxon_id)
        .where(
            CommonName.normalized_name == normalized_name,
            CommonName.language == language,
            Taxon.validity_status == "valid",
            Taxon.is_fossil.is_(False),
        )
    )
    return db.execute(stmt).scalar_one() > 1


# --------------------- Caché explícito ---------------------

class AmbiguityCache:
    """Memoriza el conjunto ambiguo por parámetros de consulta.

    Se pasa explícitamente al selector; cada pasada de ingesta debe llamar a
    `invalidate()` al terminar para que el siguiente cálculo vea los datos nuevos.
    """

    def __init__(self) -> None:
        self._sets: Dict[tuple, FrozenSet[str]] = {}

    def get(
        self,
        db: Session,
        language: str = "en",
        *,
        sources: Optional[Sequence[str]] = None,
        preferred_only: bool = False,
        kingdom: Optional[str] = None,
    ) -> FrozenSet[str]:
        key = (language, tuple(sorted(sources)) if sources else None, preferred_only, (kingdom or "").lower())
        hit = self._sets.get(key)
        if hit is None:
            hit = compute_ambiguous_names(
                db, language, sources=sources, preferred_only=preferred_only, kingdom=kingdom
            )
            self._sets[key] = hit
            if log.isEnabledFor(logging.DEBUG):
                log.debug("conjunto ambiguo %s calculado: %d nombres", key, len(hit))
        return hit

    def invalidate(self) -> None:
        self._sets.clear()

    def __len__(self) -> int:
        return len(self._sets)
