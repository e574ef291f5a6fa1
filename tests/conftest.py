# tests/conftest.py

import json

import pytest
from sqlalchemy import create_engine, text

from nomenclador.db import init_db, make_engine, make_session_factory
from nomenclador.services.ambiguity import AmbiguityCache
from nomenclador.services.common_names import upsert_common_name
from nomenclador.services.normalize import normalize_common_name_for_matching, normalize_scientific_name
from nomenclador.services.registry import upsert_taxon


@pytest.fixture(scope="function")
def db_url(tmp_path):
    """Base SQLite aislada por test."""
    return f"sqlite:///{tmp_path / 'nomenclador.db'}"


@pytest.fixture(scope="function")
def engine(db_url):
    eng = make_engine(db_url)
    init_db(eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture(scope="function")
def db(engine):
    session = make_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def ambiguity():
    return AmbiguityCache()


@pytest.fixture
def make_taxon(db):
    """Crea un taxón IUCN válido y devuelve su id."""
    counter = {"n": 0}

    def _make(
        name,
        *,
        kingdom="ANIMALIA",
        source_id=None,
        source="iucn",
        validity="valid",
        is_fossil=False,
        rank="species",
    ):
        counter["n"] += 1
        return upsert_taxon(
            db,
            canonical_name=normalize_scientific_name(name),
            original_name=name,
            rank=rank,
            kingdom=kingdom,
            is_extinct=False,
            is_fossil=is_fossil,
            validity_status=validity,
            primary_source=source,
            primary_source_id=str(source_id if source_id is not None else 1000 + counter["n"]),
        )

    return _make


@pytest.fixture
def add_name(db):
    """Guarda un nombre común ya normalizado y devuelve el id de la fila."""

    def _add(taxon_id, raw, source="iucn", *, preferred=False, language="en", display=None, ident=None):
        return upsert_common_name(
            db,
            taxon_id=taxon_id,
            raw_name=raw,
            normalized_name=normalize_common_name_for_matching(raw),
            display_name=display,
            language=language,
            source=source,
            source_identifier=ident,
            is_preferred=preferred,
        )

    return _add


# ---------------- Cachés de fuentes (SQLite) ----------------

def _sqlite_file(path, ddl, inserts=()):
    eng = create_engine(f"sqlite:///{path}", future=True)
    with eng.begin() as conn:
        for stmt in ddl:
            conn.execute(text(stmt))
        for stmt, params in inserts:
            conn.execute(text(stmt), params)
    return eng


@pytest.fixture
def iucn_cache(tmp_path):
    """Fabrica un caché de la API IUCN con la tabla `assessments`."""

    def _build(assessments):
        rows = [
            ("INSERT INTO assessments (sis_id, json) VALUES (:sis_id, :json)",
             {"sis_id": sis_id, "json": doc if isinstance(doc, str) or doc is None else json.dumps(doc)})
            for sis_id, doc in assessments
        ]
        return _sqlite_file(
            tmp_path / "iucn_api_cache.sqlite",
            ["CREATE TABLE assessments (sis_id INTEGER, json TEXT)"],
            rows,
        )

    return _build


@pytest.fixture
def iucn_taxonomy(tmp_path):
    """Fabrica la vista de taxonomía IUCN (aquí como tabla)."""

    def _build(rows):
        ddl = [
            'CREATE TABLE view_assessments_html_taxonomy_html ('
            'internalTaxonId TEXT, scientificName TEXT, "scientificName:1" TEXT, '
            'genusName TEXT, speciesName TEXT, infraType TEXT, infraName TEXT, kingdomName TEXT)'
        ]
        inserts = [
            (
                'INSERT INTO view_assessments_html_taxonomy_html VALUES '
                '(:id, :sci, :sci_t, :genus, :species, :infra_type, :infra_name, :kingdom)',
                {
                    "id": r["id"],
                    "sci": r.get("sci"),
                    "sci_t": r.get("sci_t"),
                    "genus": r.get("genus"),
                    "species": r.get("species"),
                    "infra_type": r.get("infra_type"),
                    "infra_name": r.get("infra_name"),
                    "kingdom": r.get("kingdom", "ANIMALIA"),
                },
            )
            for r in rows
        ]
        return _sqlite_file(tmp_path / "iucn.sqlite", ddl, inserts)

    return _build


@pytest.fixture
def wikidata_cache(tmp_path):
    """Entidades Wikidata y sus P627 (SIS id de IUCN)."""

    def _build(entities, p627=()):
        ddl = [
            "CREATE TABLE wikidata_entities (entity_id TEXT, entity_numeric_id INTEGER, json TEXT)",
            "CREATE TABLE wikidata_p627_values (entity_numeric_id INTEGER, value TEXT)",
        ]
        inserts = [
            ("INSERT INTO wikidata_entities VALUES (:eid, :num, :json)",
             {"eid": eid, "num": int(eid[1:]), "json": doc if isinstance(doc, str) else json.dumps(doc)})
            for eid, doc in entities
        ]
        inserts += [
            ("INSERT INTO wikidata_p627_values VALUES (:num, :value)", {"num": int(eid[1:]), "value": value})
            for eid, value in p627
        ]
        return _sqlite_file(tmp_path / "wikidata_cache.sqlite", ddl, inserts)

    return _build


@pytest.fixture
def wikipedia_cache(tmp_path):
    """Páginas, taxobox y (opcionalmente) emparejamientos con IUCN."""

    def _build(pages, matches=None):
        ddl = [
            "CREATE TABLE wiki_pages (id INTEGER PRIMARY KEY, page_title TEXT)",
            "CREATE TABLE wiki_taxobox_data (page_row_id INTEGER, scientific_name TEXT, data_json TEXT)",
        ]
        if matches is not None:
            ddl.append(
                "CREATE TABLE taxon_wiki_matches (taxon_source TEXT, taxon_identifier TEXT, "
                "page_row_id INTEGER, match_status TEXT)"
            )
        inserts = []
        for i, (title, sci, box) in enumerate(pages, start=1):
            inserts.append(("INSERT INTO wiki_pages VALUES (:id, :title)", {"id": i, "title": title}))
            if sci is not None or box is not None:
                inserts.append((
                    "INSERT INTO wiki_taxobox_data VALUES (:id, :sci, :box)",
                    {"id": i, "sci": sci, "box": box if isinstance(box, str) or box is None else json.dumps(box)},
                ))
        for page_row_id, sis_id, status in matches or ():
            inserts.append((
                "INSERT INTO taxon_wiki_matches VALUES ('IUCN', :sis, :pid, :status)",
                {"sis": sis_id, "pid": page_row_id, "status": status},
            ))
        return _sqlite_file(tmp_path / "wikipedia_cache.sqlite", ddl, inserts)

    return _build


@pytest.fixture
def col_cache(tmp_path):
    """Tablas nameusage y vernacularname de un volcado ColDP."""

    def _build(usages, vernaculars=()):
        ddl = [
            "CREATE TABLE nameusage (ID TEXT, parentID TEXT, status TEXT, rank TEXT, scientificName TEXT)",
            "CREATE TABLE vernacularname (taxonID TEXT, name TEXT, language TEXT, preferred TEXT)",
        ]
        inserts = [
            ("INSERT INTO nameusage VALUES (:id, :parent, :status, :rank, :sci)", u) for u in usages
        ]
        inserts += [
            ("INSERT INTO vernacularname VALUES (:taxon, :name, :lang, :preferred)", v) for v in vernaculars
        ]
        return _sqlite_file(tmp_path / "col.sqlite", ddl, inserts)

    return _build
