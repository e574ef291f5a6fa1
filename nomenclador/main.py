# nomenclador/main.py
from __future__ import annotations

# ------------------------------------------------------------
# Importaciones estándar y de terceros
# ------------------------------------------------------------
import logging
from typing import List, Optional

import uvicorn
from fastapi import Body, Depends, FastAPI, HTTPException, Query, Security
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security.api_key import APIKeyHeader
from sqlalchemy.orm import Session

# ------------------------------------------------------------
# Importaciones internas del proyecto
# ------------------------------------------------------------
from . import __version__, config
from .db import get_engine, make_session_factory
from .schemas import (
    AmbiguousNameOut,
    BestNameOut,
    BestNamesIn,
    CommonNameOut,
    ConflictOut,
    DisplayOut,
    ImportRunOut,
    StatsOut,
    TaxonOut,
)
from .services.ambiguity import AmbiguityCache, list_ambiguous_names
from .services.caps import count_caps_rules, load_caps_rules
from .services.common_names import get_common_names_for_taxon, get_wikipedia_article_title
from .services.conflicts import list_conflicts
from .services.normalize import apply_capitalization, find_missing_caps_words, upper_first
from .services.registry import get_scientific_names, get_statistics, get_taxon
from .services.runs import list_runs
from .services.selector import BestName, get_best_name_for_taxon, get_best_names_for_taxa, rank_candidates, source_priority

log = logging.getLogger(__name__)

# ------------------------------------------------------------
# Metadatos de tags para la documentación
# ------------------------------------------------------------
TAGS_METADATA = [
    {"name": "Salud", "description": "Verificación del servicio y conteos del almacén."},
    {"name": "Taxones", "description": "Taxones, nombres científicos y nombres comunes por taxón."},
    {"name": "Selección", "description": "Mejor nombre común (uno o por lotes)."},
    {"name": "Ambigüedad", "description": "Nombres comunes compartidos y conflictos registrados."},
    {"name": "Bitácora", "description": "Corridas de importación."},
]

# ------------------------------------------------------------
# Instancia FastAPI (solo lectura; la escritura es por CLI)
# ------------------------------------------------------------
app = FastAPI(
    title="Nomenclador de nombres comunes",
    description="API de consulta para nombres comunes por taxón: mejor nombre, ambigüedad y bitácora de importaciones.",
    version=__version__,
    openapi_tags=TAGS_METADATA,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# ------------------------------------------------------------
# API key opcional
# ------------------------------------------------------------
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def require_key(api_key: str = Security(api_key_header)):
    if not config.API_KEY:
        return True
    if api_key == config.API_KEY:
        return True
    raise HTTPException(status_code=401, detail="API key inválida")


# ------------------------------------------------------------
# Sesión de base de datos (scoped por request)
# ------------------------------------------------------------
_SessionLocal = None


def get_db():
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = make_session_factory(get_engine())
    db = _SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_ambiguity() -> AmbiguityCache:
    # un caché por request: la ingesta corre en otro proceso
    return AmbiguityCache()


def _best_out(taxon_id: int, best: Optional[BestName]) -> BestNameOut:
    if best is None:
        return BestNameOut(taxon_id=taxon_id, found=False)
    return BestNameOut(
        taxon_id=taxon_id,
        found=True,
        raw_name=best.raw_name,
        display_name=best.display_name,
        normalized_name=best.normalized_name,
        source=best.source,
        is_preferred=best.is_preferred,
        is_ambiguous=best.is_ambiguous,
    )


# ---------------- Salud ----------------
@app.get("/health", tags=["Salud"])
async def health():
    return {"status": "ok"}


@app.get("/stats", response_model=StatsOut, tags=["Salud"], dependencies=[Depends(require_key)])
def stats(db: Session = Depends(get_db)):
    return StatsOut(counts=get_statistics(db), caps_rules=count_caps_rules(db))


# ---------------- Taxones ----------------
@app.get("/taxa/{taxon_id}", response_model=TaxonOut, tags=["Taxones"], dependencies=[Depends(require_key)])
def taxon_detail(taxon_id: int, db: Session = Depends(get_db)):
    t = get_taxon(db, taxon_id)
    if t is None:
        raise HTTPException(status_code=404, detail=f"Taxón {taxon_id} no existe")
    out = TaxonOut.model_validate(t)
    out.scientific_names = get_scientific_names(db, taxon_id)
    out.wikipedia_title = get_wikipedia_article_title(db, taxon_id)
    return out


@app.get(
    "/taxa/{taxon_id}/common-names",
    response_model=List[CommonNameOut],
    tags=["Taxones"],
    dependencies=[Depends(require_key)],
)
def taxon_common_names(
    taxon_id: int,
    language: str = Query("en", min_length=2, max_length=8),
    db: Session = Depends(get_db),
    ambiguity: AmbiguityCache = Depends(get_ambiguity),
):
    """Candidatos del taxón en el orden en que los evalúa el selector."""
    if get_taxon(db, taxon_id) is None:
        raise HTTPException(status_code=404, detail=f"Taxón {taxon_id} no existe")
    ambiguous = ambiguity.get(db, language)
    return [
        CommonNameOut(
            id=c.id,
            raw_name=c.raw_name,
            normalized_name=c.normalized_name,
            display_name=c.display_name,
            language=c.language,
            source=c.source,
            source_identifier=c.source_identifier,
            is_preferred=c.is_preferred,
            priority=source_priority(c.source, c.is_preferred),
            is_ambiguous=c.normalized_name in ambiguous,
        )
        for c in rank_candidates(get_common_names_for_taxon(db, taxon_id, language))
    ]


# ---------------- Selección ----------------
@app.get(
    "/taxa/{taxon_id}/best-name",
    response_model=BestNameOut,
    tags=["Selección"],
    dependencies=[Depends(require_key)],
)
def taxon_best_name(
    taxon_id: int,
    language: str = Query("en", min_length=2, max_length=8),
    allow_ambiguous: bool = Query(False),
    db: Session = Depends(get_db),
    ambiguity: AmbiguityCache = Depends(get_ambiguity),
):
    if get_taxon(db, taxon_id) is None:
        raise HTTPException(status_code=404, detail=f"Taxón {taxon_id} no existe")
    return _best_out(taxon_id, get_best_name_for_taxon(db, taxon_id, language, allow_ambiguous, ambiguity))


@app.post("/taxa/best-names", response_model=List[BestNameOut], tags=["Selección"], dependencies=[Depends(require_key)])
def taxa_best_names(
    payload: BestNamesIn = Body(...),
    db: Session = Depends(get_db),
    ambiguity: AmbiguityCache = Depends(get_ambiguity),
):
    """Lote: un resultado por id pedido, en el mismo orden (los desconocidos con found=false)."""
    if not payload.taxon_ids:
        raise HTTPException(status_code=400, detail="Debes enviar 'taxon_ids' como lista no vacía.")
    best = get_best_names_for_taxa(db, payload.taxon_ids, payload.language, payload.allow_ambiguous, ambiguity)
    return [_best_out(tid, best.get(tid)) for tid in payload.taxon_ids]


# ---------------- Ambigüedad ----------------
@app.get("/ambiguous", response_model=List[AmbiguousNameOut], tags=["Ambigüedad"], dependencies=[Depends(require_key)])
def ambiguous_names(
    language: str = Query("en", min_length=2, max_length=8),
    kingdom: Optional[str] = Query(None, description="Filtra por reino (sin distinguir mayúsculas)."),
    source: Optional[List[str]] = Query(None, description="Restringe a estas fuentes (repetible)."),
    preferred_only: bool = Query(False),
    limit: int = Query(100, ge=1, le=5000),
    db: Session = Depends(get_db),
):
    return list_ambiguous_names(
        db, language, sources=source, preferred_only=preferred_only, kingdom=kingdom, limit=limit
    )


@app.get("/conflicts", response_model=List[ConflictOut], tags=["Ambigüedad"], dependencies=[Depends(require_key)])
def conflicts(
    conflict_type: Optional[str] = Query(None, alias="type"),
    unresolved_only: bool = Query(False),
    limit: int = Query(100, ge=1, le=5000),
    db: Session = Depends(get_db),
):
    return list_conflicts(db, conflict_type=conflict_type, unresolved_only=unresolved_only, limit=limit)


# ---------------- Mayúsculas ----------------
@app.get("/caps/display", response_model=DisplayOut, tags=["Selección"], dependencies=[Depends(require_key)])
def caps_display(name: str = Query(..., min_length=1), db: Session = Depends(get_db)):
    """Aplica las reglas de mayúsculas a un nombre cualquiera y lista las palabras sin regla."""
    rules = load_caps_rules(db)
    return DisplayOut(
        name=name,
        display=upper_first(apply_capitalization(name, rules)),
        missing_caps=find_missing_caps_words(name, lambda w: w in rules),
    )


# ---------------- Bitácora ----------------
@app.get("/import-runs", response_model=List[ImportRunOut], tags=["Bitácora"], dependencies=[Depends(require_key)])
def import_runs(
    import_type: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    return list_runs(db, import_type=import_type, limit=limit)


if __name__ == "__main__":
    uvicorn.run("nomenclador.main:app", host="0.0.0.0", port=8000, reload=True)
