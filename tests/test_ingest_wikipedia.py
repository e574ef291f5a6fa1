from sqlalchemy import select

from nomenclador.ingestors.base import ParseError
from nomenclador.ingestors.wikipedia import (
    WikiPageRow,
    extract_common_names,
    ingest_common_names,
    iter_pages,
    taxobox_common_name,
)
from nomenclador.models import CommonName
from nomenclador.services.common_names import get_wikipedia_article_title


def test_taxobox_name_rejects_italic_binomials():
    assert taxobox_common_name({"name": "[[Gray wolf]]<ref>x</ref>"}) == "Gray wolf"
    assert taxobox_common_name({"name": "''Canis lupus''"}) is None
    assert taxobox_common_name({"name": 3}) is None
    assert taxobox_common_name({}) is None


def test_title_is_preferred_and_taxobox_added_when_different():
    row = WikiPageRow(True, "3746", "Wolf (animal)", '{"name": "Gray wolf"}')
    result = extract_common_names(row)

    assert [(lk.kind, lk.value, lk.source) for lk in result.lookups] == [("source_id", "3746", "iucn")]
    assert [(c.raw_name, c.source, c.is_preferred) for c in result.candidates] == [
        ("Wolf", "wikipedia_title", True),
        ("Gray wolf", "wikipedia_taxobox", False),
    ]
    assert {c.source_identifier for c in result.candidates} == {"Wolf (animal)"}


def test_taxobox_same_as_title_is_not_repeated():
    row = WikiPageRow(False, "''Canis lupus''", "Gray wolf", '{"name": "Gray-Wolf"}')
    result = extract_common_names(row)
    assert [c.source for c in result.candidates] == ["wikipedia_title"]
    assert result.lookups[0].kind == "scientific_name"
    assert result.lookups[0].value == "Canis lupus"


def test_unreadable_taxobox_is_parse_error():
    result = extract_common_names(WikiPageRow(True, "1", "Wolf", "{"))
    assert isinstance(result, ParseError)
    assert result.record_id == "Wolf"


def test_iter_pages_without_matches_uses_taxobox_names(wikipedia_cache):
    cache = wikipedia_cache([("Wolf", "Canis lupus", {"name": "Gray wolf"}), ("Orphan", None, None)])
    rows = list(iter_pages(cache))
    assert rows == [WikiPageRow(False, "Canis lupus", "Wolf", '{"name": "Gray wolf"}')]


def test_iter_pages_prefers_precomputed_matches(wikipedia_cache):
    cache = wikipedia_cache(
        [("Wolf", "Canis lupus", {"name": "Gray wolf"}), ("Coyote", "Canis latrans", None)],
        matches=[(1, "3746", "matched"), (2, "3745", "rejected")],
    )
    rows = list(iter_pages(cache))
    assert [(r.by_iucn_id, r.taxon_key, r.page_title) for r in rows] == [(True, "3746", "Wolf")]


def test_ingest_pages(db, make_taxon, wikipedia_cache, ambiguity):
    wolf = make_taxon("Canis lupus", source_id="3746")
    cache = wikipedia_cache(
        [
            ("Wolf", "Canis lupus", {"name": "Gray wolf"}),
            ("Mercury (planet)", "Planetus mercurii", None),
            ("Broken", "Canis lupus", "{"),
        ],
    )

    stats = ingest_common_names(db, cache, ambiguity=ambiguity)

    assert stats.processed == 3
    assert stats.added == 2
    assert stats.skipped_no_taxon == 1
    assert stats.errors == 1
    rows = db.execute(select(CommonName.raw_name, CommonName.source).order_by(CommonName.id)).all()
    assert [tuple(r) for r in rows] == [("Wolf", "wikipedia_title"), ("Gray wolf", "wikipedia_taxobox")]
    assert get_wikipedia_article_title(db, wolf) == "Wolf"
