# nomenclador/services/reports.py
from __future__ import annotations

import logging
import os
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

import pandas as pd
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..models import CommonName, Taxon
from .ambiguity import WIKIPEDIA_SOURCES, AmbiguityCache, list_ambiguous_names
from .caps import count_caps_rules, find_missing_caps, guess_capitalization, load_caps_rules
from .common_names import get_candidates_for_taxa, get_common_names_by_normalized, get_distinct_raw_names
from .normalize import (
    matches_known_scientific_name,
    normalize_common_name_for_matching,
    normalize_scientific_name,
    parse_scientific_name,
    remove_disambiguation_suffix,
)
from .registry import get_scientific_names, get_statistics
from .runs import run_summaries
from .selector import rank_candidates, source_priority

log = logging.getLogger(__name__)

# ------ Reportes de ambigüedad ------

AMBIGUOUS_COLUMNS = [
    "normalized_name", "taxon_count", "taxon_id", "canonical_name", "kingdom",
    "raw_name", "source", "is_preferred",
]


def _ambiguous_report(
    db: Session,
    language: str,
    sources: Optional[Sequence[str]],
    preferred_only: bool,
    kingdom: Optional[str],
    limit: Optional[int],
    require_iucn_preferred: bool = False,
) -> pd.DataFrame:
    names = list_ambiguous_names(
        db, language, sources=sources, preferred_only=preferred_only, kingdom=kingdom, limit=limit
    )
    rows: List[Dict] = []
    for amb in names:
        group: List[Dict] = []
        for r in get_common_names_by_normalized(db, amb.normalized_name, language):
            rec = r.record
            if r.validity_status != "valid" or r.is_fossil:
                continue
            if sources and rec.source not in sources:
                continue
            if preferred_only and not rec.is_preferred:
                continue
            if kingdom and (r.kingdom or "").lower() != kingdom.lower():
                continue
            group.append({
                "normalized_name": amb.normalized_name,
                "taxon_count": amb.taxon_count,
                "taxon_id": rec.taxon_id,
                "canonical_name": r.canonical_name,
                "kingdom": r.kingdom,
                "raw_name": rec.raw_name,
                "source": rec.source,
                "is_preferred": rec.is_preferred,
            })
        if require_iucn_preferred:
            if not any(g["source"] == "iucn" and g["is_preferred"] for g in group):
                continue
            if len({g["taxon_id"] for g in group}) < 2:
                continue
        rows.extend(group)
    return pd.DataFrame(rows, columns=AMBIGUOUS_COLUMNS)


def ambiguous_report(db: Session, language: str = "en", kingdom: Optional[str] = None, limit: Optional[int] = None) -> pd.DataFrame:
    return _ambiguous_report(db, language, None, False, kingdom, limit)


def ambiguous_iucn_report(db: Session, language: str = "en", kingdom: Optional[str] = None, limit: Optional[int] = None) -> pd.DataFrame:
    """Nombres ambiguos entre todas las fuentes donde al menos un uso es IUCN preferido.

    Se listan todos los registros del nombre, de cualquier fuente.
    """
    return _ambiguous_report(db, language, None, False, kingdom, limit, require_iucn_preferred=True)


def wiki_disambig_report(db: Session, language: str = "en", kingdom: Optional[str] = None, limit: Optional[int] = None) -> pd.DataFrame:
    """Títulos/taxobox de Wikipedia que apuntan a 2+ taxones (candidatos a página de desambiguación)."""
    return _ambiguous_report(db, language, WIKIPEDIA_SOURCES, False, kingdom, limit)


def iucn_preferred_report(db: Session, language: str = "en", kingdom: Optional[str] = None, limit: Optional[int] = None) -> pd.DataFrame:
    return _ambiguous_report(db, language, ("iucn",), True, kingdom, limit)


# ------ Mayúsculas ------

def caps_report(db: Session, language: str = "en", kingdom: Optional[str] = None, limit: Optional[int] = None) -> pd.DataFrame:
    """Palabras sin regla, con ejemplos y la línea sugerida para caps.txt."""
    rules = load_caps_rules(db)
    if kingdom:
        stmt = (
            select(CommonName.raw_name)
            .join(Taxon, Taxon.id == CommonName.taxon_id)
            .where(CommonName.language == language, func.lower(Taxon.kingdom) == kingdom.lower())
            .distinct()
            .order_by(CommonName.raw_name)
        )
        names = list(db.execute(stmt).scalars())
    else:
        names = get_distinct_raw_names(db, language)
    missing = find_missing_caps(names, rules)
    rows = [
        {
            "word": word,
            "occurrences": entry.count,
            "examples": ", ".join(entry.examples),
            "suggested_entry": f"{guess_capitalization(word, entry.examples)} // {', '.join(entry.examples)}",
        }
        for word, entry in missing.items()
    ]
    df = pd.DataFrame(rows, columns=["word", "occurrences", "examples", "suggested_entry"])
    return df.head(limit) if limit else df


# ------ Traza de selección ------

TRACE_COLUMNS = [
    "taxon_id", "canonical_name", "rank_in_taxon", "raw_name", "cleaned_name", "source", "is_preferred",
    "priority", "is_ambiguous", "matches_scientific", "has_disambig_suffix", "is_rejected", "reason",
    "is_winner", "issues",
]

# umbrales de los avisos por taxón
MANY_REJECTED = 3
LOW_PRIORITY = 6


def _scientific_keys(db: Session, taxon_id: int) -> Set[str]:
    keys = set()
    for name in get_scientific_names(db, taxon_id):
        key = normalize_common_name_for_matching(normalize_scientific_name(name) or name)
        if key:
            keys.add(key)
    return keys


def trace_issues(rows: Sequence[Dict], language: str = "en") -> List[str]:
    """Avisos de un taxón a partir de sus filas de traza."""
    issues: List[str] = []
    if not rows:
        return issues
    lang = "English" if language == "en" else language
    rejected_sci = sum(1 for r in rows if r["matches_scientific"])
    rejected_amb = sum(1 for r in rows if r["is_ambiguous"])
    if all(r["is_rejected"] for r in rows):
        issues.append(f"No acceptable {lang} name ({len(rows)} candidates, all rejected)")
    if rejected_sci >= MANY_REJECTED:
        issues.append(f"Many scientific-name-like candidates ({rejected_sci} rejected)")
    if rejected_amb >= MANY_REJECTED:
        issues.append(f"Many ambiguous candidates ({rejected_amb} rejected)")
    winner = next((r for r in rows if r["is_winner"]), None)
    if winner is not None and winner["priority"] >= LOW_PRIORITY:
        issues.append(f"Selected from low-priority source (priority {winner['priority']}, {winner['source']})")
    return issues


def trace_report(
    db: Session,
    language: str = "en",
    kingdom: Optional[str] = None,
    limit: Optional[int] = None,
    taxon_ids: Optional[Iterable[int]] = None,
    cache: Optional[AmbiguityCache] = None,
) -> pd.DataFrame:
    """Cada candidato por taxón: prioridad, motivos de rechazo, cuál gana y avisos del taxón.

    Un candidato se rechaza si es ambiguo o si coincide con un nombre
    científico del taxón (canónico, original, sinónimos, género o epíteto).
    Gana el primero no rechazado en el orden del selector.
    """
    if taxon_ids is None:
        stmt = select(Taxon.id).where(Taxon.validity_status == "valid")
        if kingdom:
            stmt = stmt.where(func.lower(Taxon.kingdom) == kingdom.lower())
        stmt = stmt.order_by(Taxon.id)
        if limit:
            stmt = stmt.limit(limit)
        taxon_ids = list(db.execute(stmt).scalars())
    taxon_ids = list(taxon_ids)

    cache = cache if cache is not None else AmbiguityCache()
    ambiguous = cache.get(db, language)
    names = dict(db.execute(select(Taxon.id, Taxon.canonical_name).where(Taxon.id.in_(taxon_ids))).all())
    rows: List[Dict] = []
    for tid, cands in get_candidates_for_taxa(db, taxon_ids, language).items():
        canonical = names.get(tid)
        genus, _, species, _, _ = parse_scientific_name(canonical)
        sci_keys = _scientific_keys(db, tid)
        taxon_rows: List[Dict] = []
        winner_found = False
        for i, c in enumerate(rank_candidates(cands), start=1):
            cleaned = remove_disambiguation_suffix(c.raw_name)
            matches_sci = c.normalized_name in sci_keys or matches_known_scientific_name(
                cleaned, canonical, genus, species
            )
            is_amb = c.normalized_name in ambiguous
            reason = [label for flag, label in ((matches_sci, "matches scientific name"), (is_amb, "ambiguous")) if flag]
            is_winner = not reason and not winner_found
            winner_found = winner_found or is_winner
            taxon_rows.append({
                "taxon_id": tid,
                "canonical_name": canonical,
                "rank_in_taxon": i,
                "raw_name": c.raw_name,
                "cleaned_name": cleaned,
                "source": c.source,
                "is_preferred": c.is_preferred,
                "priority": source_priority(c.source, c.is_preferred),
                "is_ambiguous": is_amb,
                "matches_scientific": matches_sci,
                "has_disambig_suffix": cleaned != c.raw_name,
                "is_rejected": bool(reason),
                "reason": "; ".join(reason),
                "is_winner": is_winner,
            })
        issues = "; ".join(trace_issues(taxon_rows, language))
        for r in taxon_rows:
            r["issues"] = issues
        rows.extend(taxon_rows)
    return pd.DataFrame(rows, columns=TRACE_COLUMNS)


# ------ Resumen ------

def summary_report(db: Session, language: str = "en", kingdom: Optional[str] = None, limit: Optional[int] = None) -> pd.DataFrame:
    stats = get_statistics(db)
    stats["caps_rules"] = count_caps_rules(db)
    stats["ambiguous_names"] = len(list_ambiguous_names(db, language, kingdom=kingdom))
    rows = [{"metric": k, "value": v} for k, v in stats.items()]
    for s in run_summaries(db):
        rows.append({
            "metric": f"import:{s.import_type}",
            "value": s.total_added,
            "last_ended_at": s.last_ended_at,
            "has_completed": s.has_completed,
        })
    return pd.DataFrame(rows, columns=["metric", "value", "last_ended_at", "has_completed"])


REPORTS: Dict[str, Callable[..., pd.DataFrame]] = {
    "ambiguous": ambiguous_report,
    "ambiguous-iucn": ambiguous_iucn_report,
    "caps": caps_report,
    "wiki-disambig": wiki_disambig_report,
    "iucn-preferred": iucn_preferred_report,
    "trace": trace_report,
    "summary": summary_report,
}


def build_report(db: Session, name: str, **kwargs) -> pd.DataFrame:
    try:
        fn = REPORTS[name]
    except KeyError:
        raise ValueError(f"Reporte desconocido: {name!r} (use {', '.join(REPORTS)})") from None
    return fn(db, **kwargs)


def export_frame(df: pd.DataFrame, path: str) -> str:
    """Escribe CSV o Excel según la extensión."""
    folder = os.path.dirname(path)
    if folder:
        os.makedirs(folder, exist_ok=True)
    if path.lower().endswith((".xlsx", ".xls")):
        df.to_excel(path, index=False)
    else:
        sep = "\t" if path.lower().endswith(".tsv") else ","
        df.to_csv(path, index=False, sep=sep)
    return path
