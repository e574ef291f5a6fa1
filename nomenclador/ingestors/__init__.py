# nomenclador/ingestors/__init__.py
"""Adaptadores de fuentes de nombres comunes.

El conjunto es cerrado: cada fuente registra su extractor, su pasada de
ingesta y la variable de entorno con la ruta de su caché.
"""
from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from . import col, iucn, wikidata, wikipedia
from .base import ExtractionResult, Extractor, IngestStats


@dataclass(frozen=True)
class SourceAdapter:
    name: str
    title: str
    env_var: str
    extract: Extractor
    ingest: Callable[..., IngestStats]
    ingest_synonyms: Optional[Callable[..., IngestStats]] = None


SOURCES: Mapping[str, SourceAdapter] = OrderedDict(
    (
        ("iucn", SourceAdapter(
            "iucn", "IUCN Red List (caché de la API)", "IUCN_API_CACHE_PATH",
            iucn.extract_common_names, iucn.ingest_common_names, iucn.ingest_synonyms,
        )),
        ("wikidata", SourceAdapter(
            "wikidata", "Wikidata", "WIKIDATA_CACHE_PATH",
            wikidata.extract_common_names, wikidata.ingest_common_names,
        )),
        ("wikipedia", SourceAdapter(
            "wikipedia", "Wikipedia (en)", "WIKIPEDIA_CACHE_PATH",
            wikipedia.extract_common_names, wikipedia.ingest_common_names,
        )),
        ("col", SourceAdapter(
            "col", "Catalogue of Life", "COL_SQLITE_PATH",
            col.extract_common_names, col.ingest_common_names, col.ingest_synonyms,
        )),
    )
)

EXTRACTORS: Mapping[str, Extractor] = OrderedDict((k, a.extract) for k, a in SOURCES.items())


def extract_candidate_names(source: str, payload: Any) -> ExtractionResult:
    """Despacha al extractor de la fuente indicada."""
    try:
        extractor = EXTRACTORS[source]
    except KeyError:
        raise ValueError(f"Fuente desconocida: {source!r} (use {', '.join(EXTRACTORS)})") from None
    return extractor(payload)


__all__ = ["SOURCES", "EXTRACTORS", "SourceAdapter", "extract_candidate_names"]
