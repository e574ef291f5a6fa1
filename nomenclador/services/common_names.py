# nomenclador/services/common_names.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from sqlalchemy import case, func, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.orm import Session

from ..models import CommonName, Taxon, utcnow

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommonNameRecord:
    """Fila de nombre común tal como la consumen el selector y los reportes."""

    id: int
    taxon_id: int
    raw_name: str
    normalized_name: str
    display_name: Optional[str]
    language: str
    source: str
    source_identifier: Optional[str]
    is_preferred: bool


@dataclass(frozen=True)
class CommonNameWithTaxon:
    record: CommonNameRecord
    canonical_name: str
    kingdom: Optional[str]
    validity_status: str
    is_fossil: bool


def _to_record(cn: CommonName) -> CommonNameRecord:
    return CommonNameRecord(
        id=cn.id,
        taxon_id=cn.taxon_id,
        raw_name=cn.raw_name,
        normalized_name=cn.normalized_name,
        display_name=cn.display_name,
        language=cn.language,
        source=cn.source,
        source_identifier=cn.source_identifier,
        is_preferred=bool(cn.is_preferred),
    )


# --------------------- Escritura ---------------------

def upsert_common_name(
    db: Session,
    taxon_id: int,
    raw_name: str,
    normalized_name: str,
    display_name: Optional[str],
    language: str,
    source: str,
    source_identifier: Optional[str],
    is_preferred: bool,
) -> int:
    """Inserta o fusiona por (taxon, nombre normalizado, fuente, idioma).

    Al fusionar: gana el raw_name nuevo, display_name se coalesce (el nuevo si
    no es NULL) y is_preferred queda en el máximo de ambos. Devuelve el id.
    """
    stmt = insert(CommonName).values(
        taxon_id=taxon_id,
        raw_name=raw_name,
        normalized_name=normalized_name,
        display_name=display_name,
        language=language or "en",
        source=source,
        source_identifier=source_identifier,
        is_preferred=bool(is_preferred),
        created_at=utcnow(),
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[
            CommonName.taxon_id,
            CommonName.normalized_name,
            CommonName.source,
            CommonName.language,
        ],
        set_={
            "raw_name": stmt.excluded.raw_name,
            "display_name": func.coalesce(stmt.excluded.display_name, CommonName.display_name),
            "is_preferred": func.max(CommonName.is_preferred, stmt.excluded.is_preferred),
        },
    ).returning(CommonName.id)
    return db.execute(stmt).scalar_one()


def set_display_name(db: Session, common_name_id: int, display_name: Optional[str]) -> None:
    cn = db.get(CommonName, common_name_id)
    if cn is not None:
        cn.display_name = display_name


# --------------------- Lectura ---------------------

def get_common_names_for_taxon(db: Session, taxon_id: int, language: Optional[str] = "en") -> List[CommonNameRecord]:
    stmt = select(CommonName).where(CommonName.taxon_id == taxon_id)
    if language:
        stmt = stmt.where(CommonName.language == language)
    rows = db.execute(stmt.order_by(CommonName.id)).scalars()
    return [_to_record(cn) for cn in rows]


def get_candidates_for_taxa(
    db: Session, taxon_ids: Iterable[int], language: str = "en", valid_only: bool = True
) -> Dict[int, List[CommonNameRecord]]:
    """Candidatos de varios taxones en una sola consulta (por defecto solo taxones válidos)."""
    ids = sorted({int(i) for i in taxon_ids})
    out: Dict[int, List[CommonNameRecord]] = {i: [] for i in ids}
    if not ids:
        return out
    stmt = (
        select(CommonName)
        .join(Taxon, Taxon.id == CommonName.taxon_id)
        .where(CommonName.taxon_id.in_(ids), CommonName.language == language)
        .order_by(CommonName.taxon_id, CommonName.id)
    )
    if valid_only:
        stmt = stmt.where(Taxon.validity_status == "valid")
    for cn in db.execute(stmt).scalars():
        out[cn.taxon_id].append(_to_record(cn))
    return out


def get_common_names_by_normalized(
    db: Session, normalized_name: str, language: str = "en"
) -> List[CommonNameWithTaxon]:
    """Todas las filas con esa clave, con los datos del taxón dueño."""
    stmt = (
        select(CommonName, Taxon.canonical_name, Taxon.kingdom, Taxon.validity_status, Taxon.is_fossil)
        .join(Taxon, Taxon.id == CommonName.taxon_id)
        .where(CommonName.normalized_name == normalized_name, CommonName.language == language)
        .order_by(CommonName.taxon_id, CommonName.id)
    )
    return [
        CommonNameWithTaxon(_to_record(cn), canonical, kingdom, validity, bool(fossil))
        for cn, canonical, kingdom, validity, fossil in db.execute(stmt)
    ]


def get_distinct_raw_names(db: Session, language: str = "en", limit: Optional[int] = None) -> List[str]:
    stmt = (
        select(CommonName.raw_name)
        .where(CommonName.language == language)
        .distinct()
        .order_by(CommonName.raw_name)
    )
    if limit:
        stmt = stmt.limit(limit)
    return list(db.execute(stmt).scalars())


def get_wikipedia_article_title(db: Session, taxon_id: int, language: str = "en") -> Optional[str]:
    """Nombre del artículo: título de Wikipedia y, si no hay, el nombre del taxobox."""
    return db.execute(
        select(CommonName.raw_name)
        .where(
            CommonName.taxon_id == taxon_id,
            CommonName.language == language,
            CommonName.source.in_(("wikipedia_title", "wikipedia_taxobox")),
        )
        .order_by(
            case((CommonName.source == "wikipedia_title", 1), else_=2),
            CommonName.is_preferred.desc(),
            CommonName.id,
        )
        .limit(1)
    ).scalar_one_or_none()
