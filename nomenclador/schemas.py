# nomenclador/schemas.py
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

# ------------------ Taxones y nombres ------------------

class TaxonOut(BaseModel):
    id: int
    canonical_name: str
    original_name: Optional[str] = None
    rank: Optional[str] = None
    kingdom: Optional[str] = None
    is_extinct: bool = False
    is_fossil: bool = False
    validity_status: str = "valid"
    primary_source: str
    primary_source_id: str
    scientific_names: List[str] = Field(default_factory=list)
    wikipedia_title: Optional[str] = None

    # Pydantic v2: leer desde objetos ORM
    model_config = {"from_attributes": True}


class CommonNameOut(BaseModel):
    id: int
    raw_name: str
    normalized_name: str
    display_name: Optional[str] = None
    language: str
    source: str
    source_identifier: Optional[str] = None
    is_preferred: bool = False
    priority: int = 99
    is_ambiguous: bool = False

    model_config = {"from_attributes": True}


class BestNameOut(BaseModel):
    taxon_id: int
    found: bool
    raw_name: Optional[str] = None
    display_name: Optional[str] = None
    normalized_name: Optional[str] = None
    source: Optional[str] = None
    is_preferred: bool = False
    is_ambiguous: bool = False


class BestNamesIn(BaseModel):
    taxon_ids: List[int] = Field(default_factory=list, max_length=5000)
    language: str = "en"
    allow_ambiguous: bool = False


# ------------------ Ambigüedad y conflictos ------------------

class AmbiguousNameOut(BaseModel):
    normalized_name: str
    taxon_count: int

    model_config = {"from_attributes": True}


class ConflictOut(BaseModel):
    id: int
    normalized_name: str
    conflict_type: str
    taxon_id_a: int
    common_name_id_a: Optional[int] = None
    taxon_id_b: Optional[int] = None
    common_name_id_b: Optional[int] = None
    resolution: Optional[str] = None
    resolution_notes: Optional[str] = None
    detected_at: datetime
    resolved_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# ------------------ Bitácora ------------------

class ImportRunOut(BaseModel):
    id: int
    import_type: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    records_processed: int = 0
    records_added: int = 0
    records_updated: int = 0
    errors: int = 0
    status: str
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class StatsOut(BaseModel):
    counts: Dict[str, int] = Field(default_factory=dict)
    caps_rules: int = 0


class DisplayOut(BaseModel):
    name: str
    display: str
    missing_caps: List[str] = Field(default_factory=list)


__all__ = [
    "TaxonOut",
    "CommonNameOut",
    "BestNameOut",
    "BestNamesIn",
    "AmbiguousNameOut",
    "ConflictOut",
    "ImportRunOut",
    "StatsOut",
    "DisplayOut",
]
