from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


# ------ Taxones ------

class Taxon(Base):
    __tablename__ = "taxa"
    __table_args__ = (
        UniqueConstraint("primary_source", "primary_source_id", name="uq_taxa_source"),
        Index("idx_taxa_canonical", "canonical_name"),
        Index("idx_taxa_kingdom", "kingdom"),
        Index("idx_taxa_validity", "validity_status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    canonical_name: Mapped[str] = mapped_column(String(512), nullable=False)
    original_name: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    rank: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    kingdom: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    is_extinct: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_fossil: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # valid | synonym | uncertain | invalid
    validity_status: Mapped[str] = mapped_column(String(16), nullable=False, default="valid")
    primary_source: Mapped[str] = mapped_column(String(32), nullable=False)
    primary_source_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    synonyms: Mapped[List["ScientificNameSynonym"]] = relationship(
        "ScientificNameSynonym",
        back_populates="taxon",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    common_names: Mapped[List["CommonName"]] = relationship(
        "CommonName",
        back_populates="taxon",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class ScientificNameSynonym(Base):
    """Nombre científico alternativo; solo se usa para búsquedas."""

    __tablename__ = "scientific_name_synonyms"
    __table_args__ = (
        UniqueConstraint("taxon_id", "normalized_name", "source", name="uq_synonym"),
        Index("idx_synonyms_normalized", "normalized_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    taxon_id: Mapped[int] = mapped_column(
        ForeignKey("taxa.id", ondelete="CASCADE"), nullable=False, index=True
    )
    normalized_name: Mapped[str] = mapped_column(String(512), nullable=False)
    original_name: Mapped[str] = mapped_column(String(512), nullable=False)
    # iucn | col | wikidata | constructed
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    # synonym | basionym | ambiguous_synonym | subgenus_variant | rank_variant
    synonym_type: Mapped[str] = mapped_column(String(32), nullable=False, default="synonym")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    taxon: Mapped["Taxon"] = relationship("Taxon", back_populates="synonyms")


# ------ Nombres comunes ------

class CommonName(Base):
    __tablename__ = "common_names"
    __table_args__ = (
        UniqueConstraint("taxon_id", "normalized_name", "source", "language", name="uq_common_name"),
        Index("idx_common_names_normalized", "normalized_name"),
        Index("idx_common_names_language", "language"),
        Index("idx_common_names_source", "source"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    taxon_id: Mapped[int] = mapped_column(
        ForeignKey("taxa.id", ondelete="CASCADE"), nullable=False, index=True
    )
    raw_name: Mapped[str] = mapped_column(String(512), nullable=False)
    normalized_name: Mapped[str] = mapped_column(String(512), nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    language: Mapped[str] = mapped_column(String(8), nullable=False, default="en")
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    source_identifier: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    is_preferred: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    taxon: Mapped["Taxon"] = relationship("Taxon", back_populates="common_names")


class CrossReference(Base):
    """Procedencia: cómo se enlazó un taxón con un registro externo."""

    __tablename__ = "taxon_cross_references"
    __table_args__ = (
        UniqueConstraint("taxon_id", "source", "source_identifier", name="uq_xref"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    taxon_id: Mapped[int] = mapped_column(
        ForeignKey("taxa.id", ondelete="CASCADE"), nullable=False, index=True
    )
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    source_identifier: Mapped[str] = mapped_column(String(512), nullable=False)
    # exact | synonym | fuzzy | manual
    match_type: Mapped[str] = mapped_column(String(16), nullable=False, default="exact")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class CommonNameConflict(Base):
    """Dato derivado: se puede borrar y recalcular en cualquier momento."""

    __tablename__ = "common_name_conflicts"
    __table_args__ = (
        Index("idx_conflicts_normalized", "normalized_name"),
        Index("idx_conflicts_type", "conflict_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    normalized_name: Mapped[str] = mapped_column(String(512), nullable=False)
    # ambiguous | caps_mismatch | cross_source_mismatch
    conflict_type: Mapped[str] = mapped_column(String(32), nullable=False)
    taxon_id_a: Mapped[int] = mapped_column(
        ForeignKey("taxa.id", ondelete="CASCADE"), nullable=False
    )
    common_name_id_a: Mapped[Optional[int]] = mapped_column(
        ForeignKey("common_names.id", ondelete="SET NULL"), nullable=True
    )
    taxon_id_b: Mapped[Optional[int]] = mapped_column(
        ForeignKey("taxa.id", ondelete="CASCADE"), nullable=True
    )
    common_name_id_b: Mapped[Optional[int]] = mapped_column(
        ForeignKey("common_names.id", ondelete="SET NULL"), nullable=True
    )
    # NULL | prefer_a | prefer_b | reject_both | manual
    resolution: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    resolution_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    detected_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


# ------ Reglas de mayúsculas ------

class CapsRule(Base):
    __tablename__ = "caps_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    lowercase_word: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    correct_form: Mapped[str] = mapped_column(String(128), nullable=False)
    examples: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # caps_txt | manual | inferred
    source: Mapped[str] = mapped_column(String(16), nullable=False, default="caps_txt")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


# ------ Bitácora de importaciones ------

class ImportRun(Base):
    __tablename__ = "import_runs"
    __table_args__ = (
        Index("idx_import_runs_type", "import_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    import_type: Mapped[str] = mapped_column(String(64), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    records_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_added: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    records_updated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errors: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # running | completed
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="running")
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
