# nomenclador/services/conflicts.py
from __future__ import annotations

import logging
from collections import defaultdict
from itertools import combinations
from typing import Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..models import CommonName, CommonNameConflict, Taxon, utcnow
from .ambiguity import compute_ambiguous_names

log = logging.getLogger(__name__)

RESOLUTIONS = ("prefer_a", "prefer_b", "reject_both", "manual")


def clear_conflicts(db: Session, conflict_type: Optional[str] = None) -> int:
    stmt = delete(CommonNameConflict)
    if conflict_type:
        stmt = stmt.where(CommonNameConflict.conflict_type == conflict_type)
    return db.execute(stmt).rowcount or 0


def record_conflict(
    db: Session,
    normalized_name: str,
    conflict_type: str,
    taxon_id_a: int,
    common_name_id_a: Optional[int] = None,
    taxon_id_b: Optional[int] = None,
    common_name_id_b: Optional[int] = None,
    notes: Optional[str] = None,
) -> CommonNameConflict:
    c = CommonNameConflict(
        normalized_name=normalized_name,
        conflict_type=conflict_type,
        taxon_id_a=taxon_id_a,
        common_name_id_a=common_name_id_a,
        taxon_id_b=taxon_id_b,
        common_name_id_b=common_name_id_b,
        resolution_notes=notes,
        detected_at=utcnow(),
    )
    db.add(c)
    return c


def detect_ambiguous_conflicts(db: Session, language: str = "en", include_fossil: bool = False) -> int:
    """Un conflicto 'ambiguous' por cada par de taxones distintos del mismo reino.

    Los reinos NULL se agrupan como 'unknown'. Los fósiles solo cuentan con
    `include_fossil`.
    """
    names = sorted(compute_ambiguous_names(db, language, include_fossil=include_fossil))

    created = 0
    for name in names:
        stmt = (
            select(CommonName.id, CommonName.taxon_id, Taxon.kingdom)
            .join(Taxon, Taxon.id == CommonName.taxon_id)
            .where(
                CommonName.normalized_name == name,
                CommonName.language == language,
                Taxon.validity_status == "valid",
            )
            .order_by(CommonName.taxon_id, CommonName.id)
        )
        if not include_fossil:
            stmt = stmt.where(Taxon.is_fossil.is_(False))

        by_kingdom: Dict[str, Dict[int, int]] = defaultdict(dict)
        for cn_id, taxon_id, kingdom in db.execute(stmt):
            # primer nombre común de cada taxón representa al taxón
            by_kingdom[kingdom or "unknown"].setdefault(taxon_id, cn_id)

        for kingdom, owners in by_kingdom.items():
            for (ta, ca), (tb, cb) in combinations(sorted(owners.items()), 2):
                record_conflict(db, name, "ambiguous", ta, ca, tb, cb)
                created += 1
    log.info("Conflictos ambiguos detectados: %d (%d nombres)", created, len(names))
    return created


def resolve_conflict(db: Session, conflict_id: int, resolution: str, notes: Optional[str] = None) -> CommonNameConflict:
    if resolution not in RESOLUTIONS:
        raise ValueError(f"Resolución inválida: {resolution!r} (use {', '.join(RESOLUTIONS)})")
    c = db.get(CommonNameConflict, conflict_id)
    if c is None:
        raise LookupError(f"conflicto {conflict_id} no existe")
    c.resolution = resolution
    if notes:
        c.resolution_notes = notes
    c.resolved_at = utcnow()
    return c


def list_conflicts(
    db: Session,
    conflict_type: Optional[str] = None,
    unresolved_only: bool = False,
    limit: Optional[int] = 100,
) -> List[CommonNameConflict]:
    stmt = select(CommonNameConflict)
    if conflict_type:
        stmt = stmt.where(CommonNameConflict.conflict_type == conflict_type)
    if unresolved_only:
        stmt = stmt.where(CommonNameConflict.resolution.is_(None))
    stmt = stmt.order_by(CommonNameConflict.normalized_name, CommonNameConflict.id)
    if limit:
        stmt = stmt.limit(limit)
    return list(db.execute(stmt).scalars())
