# nomenclador/services/registry.py
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.orm import Session

from ..models import (
    CommonName,
    CommonNameConflict,
    CrossReference,
    ScientificNameSynonym,
    Taxon,
    utcnow,
)
from .normalize import generate_name_variants, normalize_scientific_name

log = logging.getLogger(__name__)

VALID = "valid"


# --------------------- Taxones ---------------------

def upsert_taxon(
    db: Session,
    canonical_name: str,
    original_name: Optional[str],
    rank: Optional[str],
    kingdom: Optional[str],
    is_extinct: bool,
    is_fossil: bool,
    validity_status: str,
    primary_source: str,
    primary_source_id: str,
) -> int:
    """Inserta o actualiza por (primary_source, primary_source_id) y devuelve el id.

    En conflicto se sobrescriben nombre, rango, banderas y validez; el reino
    solo se reemplaza si el nuevo valor no es NULL.
    """
    now = utcnow()
    stmt = insert(Taxon).values(
        canonical_name=canonical_name,
        original_name=original_name,
        rank=rank,
        kingdom=kingdom,
        is_extinct=bool(is_extinct),
        is_fossil=bool(is_fossil),
        validity_status=validity_status or VALID,
        primary_source=primary_source,
        primary_source_id=str(primary_source_id),
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[Taxon.primary_source, Taxon.primary_source_id],
        set_={
            "canonical_name": stmt.excluded.canonical_name,
            "original_name": stmt.excluded.original_name,
            "rank": stmt.excluded.rank,
            "kingdom": func.coalesce(stmt.excluded.kingdom, Taxon.kingdom),
            "is_extinct": stmt.excluded.is_extinct,
            "is_fossil": stmt.excluded.is_fossil,
            "validity_status": stmt.excluded.validity_status,
            "updated_at": stmt.excluded.updated_at,
        },
    ).returning(Taxon.id)
    return db.execute(stmt).scalar_one()


def find_by_source_id(db: Session, source: str, source_id) -> Optional[int]:
    if source_id is None or str(source_id).strip() == "":
        return None
    return db.execute(
        select(Taxon.id)
        .where(Taxon.primary_source == source, Taxon.primary_source_id == str(source_id).strip())
        .limit(1)
    ).scalar_one_or_none()


def find_by_canonical_name(db: Session, name: Optional[str], kingdom: Optional[str] = None) -> Optional[int]:
    """Solo taxones válidos. `name` ya debe venir normalizado."""
    if not name:
        return None
    stmt = select(Taxon.id).where(Taxon.canonical_name == name, Taxon.validity_status == VALID)
    if kingdom:
        stmt = stmt.where(func.lower(Taxon.kingdom) == kingdom.lower())
    return db.execute(stmt.order_by(Taxon.id).limit(1)).scalar_one_or_none()


def find_by_scientific_name(db: Session, name: Optional[str], kingdom: Optional[str] = None) -> Optional[int]:
    """Normaliza y busca primero por nombre canónico y luego en sinónimos."""
    norm = normalize_scientific_name(name)
    if norm is None:
        return None
    taxon_id = find_by_canonical_name(db, norm, kingdom)
    if taxon_id is not None:
        return taxon_id
    return find_taxon_by_synonym(db, norm, kingdom)


def get_taxon(db: Session, taxon_id: int) -> Optional[Taxon]:
    return db.get(Taxon, taxon_id)


def get_scientific_names(db: Session, taxon_id: int) -> List[str]:
    """Nombre canónico, original y formas originales de los sinónimos (sin repetir)."""
    out: List[str] = []
    t = db.get(Taxon, taxon_id)
    if t is None:
        return out
    for n in (t.canonical_name, t.original_name):
        if n and n not in out:
            out.append(n)
    rows = db.execute(
        select(ScientificNameSynonym.original_name)
        .where(ScientificNameSynonym.taxon_id == taxon_id)
        .order_by(ScientificNameSynonym.id)
    ).scalars()
    for n in rows:
        if n and n not in out:
            out.append(n)
    return out


# --------------------- Sinónimos ---------------------

def insert_synonym(
    db: Session,
    taxon_id: int,
    normalized_name: Optional[str],
    original_name: str,
    source: str,
    synonym_type: str = "synonym",
) -> bool:
    """Inserta si no existe (taxon, nombre normalizado, fuente). True si insertó."""
    if not normalized_name:
        return False
    stmt = insert(ScientificNameSynonym).values(
        taxon_id=taxon_id,
        normalized_name=normalized_name,
        original_name=original_name,
        source=source,
        synonym_type=synonym_type or "synonym",
        created_at=utcnow(),
    ).on_conflict_do_nothing(
        index_elements=[
            ScientificNameSynonym.taxon_id,
            ScientificNameSynonym.normalized_name,
            ScientificNameSynonym.source,
        ]
    )
    return db.execute(stmt).rowcount > 0


def insert_synonym_variants(
    db: Session,
    taxon_id: int,
    genus: Optional[str],
    subgenus: Optional[str],
    species: Optional[str],
    infra: Optional[str],
    rank_label: Optional[str],
) -> int:
    """Variantes construidas (no canónicas) como sinónimos de fuente 'constructed'."""
    n = 0
    for v in generate_name_variants(genus, subgenus, species, infra, rank_label):
        if v.variant_type == "canonical":
            continue
        if insert_synonym(db, taxon_id, v.normalized_form, v.original_form, "constructed", v.variant_type):
            n += 1
    return n


def find_taxon_by_synonym(db: Session, normalized_name: Optional[str], kingdom: Optional[str] = None) -> Optional[int]:
    """Primer taxón válido dueño del sinónimo (orden por id).

    Si varios taxones válidos comparten el sinónimo se avisa en el log; se
    mantiene igualmente la primera coincidencia.
    """
    if not normalized_name:
        return None
    stmt = (
        select(ScientificNameSynonym.taxon_id)
        .join(Taxon, Taxon.id == ScientificNameSynonym.taxon_id)
        .where(ScientificNameSynonym.normalized_name == normalized_name, Taxon.validity_status == VALID)
    )
    if kingdom:
        stmt = stmt.where(func.lower(Taxon.kingdom) == kingdom.lower())
    owners = db.execute(stmt.distinct().order_by(ScientificNameSynonym.taxon_id).limit(2)).scalars().all()
    if not owners:
        return None
    if len(owners) > 1:
        log.warning("Sinónimo '%s' compartido por varios taxones válidos; se usa %s", normalized_name, owners[0])
    return owners[0]


# --------------------- Referencias cruzadas ---------------------

def insert_cross_reference(
    db: Session,
    taxon_id: int,
    source: str,
    source_identifier,
    match_type: str = "exact",
) -> bool:
    if source_identifier is None or str(source_identifier).strip() == "":
        return False
    stmt = insert(CrossReference).values(
        taxon_id=taxon_id,
        source=source,
        source_identifier=str(source_identifier),
        match_type=match_type,
        created_at=utcnow(),
    ).on_conflict_do_nothing(
        index_elements=[CrossReference.taxon_id, CrossReference.source, CrossReference.source_identifier]
    )
    return db.execute(stmt).rowcount > 0


# --------------------- Estadísticas ---------------------

def get_statistics(db: Session) -> Dict[str, int]:
    def count(model) -> int:
        return db.execute(select(func.count()).select_from(model)).scalar_one()

    return {
        "taxa": count(Taxon),
        "synonyms": count(ScientificNameSynonym),
        "common_names": count(CommonName),
        "cross_references": count(CrossReference),
        "conflicts": count(CommonNameConflict),
    }
