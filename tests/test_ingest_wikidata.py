from sqlalchemy import select

from nomenclador.ingestors.base import ParseError
from nomenclador.ingestors.wikidata import extract_common_names, ingest_common_names, parse_entity
from nomenclador.models import CommonName, CrossReference


def _claim(value):
    return {"mainsnak": {"datavalue": {"value": value}}}


def _entity(sci, commons=(), label=None):
    claims = {"P225": [_claim(s) for s in sci]}
    claims["P1843"] = [_claim({"text": t, "language": lang}) for t, lang in commons]
    doc = {"claims": claims}
    if label is not None:
        doc["labels"] = {"en": {"language": "en", "value": label}}
    return doc


WOLF = _entity(
    ["Canis lupus"],
    [("Gray wolf", "en"), ("Grey wolf", "en-gb"), ("Loup", "fr")],
    label="wolf",
)


def test_parse_entity_skips_novalue_claims():
    doc = _entity(["Canis lupus"])
    doc["claims"]["P225"].append({"mainsnak": {"snaktype": "novalue"}})
    sci, common, label = parse_entity(doc)
    assert sci == ["Canis lupus"]
    assert common == []
    assert label is None


def test_extract_english_names_and_label():
    result = extract_common_names(("Q18498", WOLF, "3746,  "))

    assert [(lk.kind, lk.value) for lk in result.lookups] == [("source_id", "3746"), ("scientific_name", "Canis lupus")]
    assert [(c.raw_name, c.source) for c in result.candidates] == [
        ("Gray wolf", "wikidata"),
        ("Grey wolf", "wikidata"),
        ("wolf", "wikidata_label"),
    ]
    assert {c.source_identifier for c in result.candidates} == {"Q18498"}


def test_label_equal_to_scientific_name_is_dropped():
    result = extract_common_names(("Q1", _entity(["Canis lupus"], label="canis LUPUS"), None))
    assert result.candidates == ()
    result = extract_common_names(("Q2", _entity(["Aus bus"], label="Canis familiaris"), None))
    assert result.candidates == ()


def test_extract_bad_json():
    assert isinstance(extract_common_names(("Q3", "[[", None)), ParseError)


def test_ingest_resolves_by_iucn_id_then_name(db, make_taxon, wikidata_cache, ambiguity):
    wolf = make_taxon("Canis lupus", source_id="3746")
    coyote = make_taxon("Canis latrans", source_id="3745")
    cache = wikidata_cache(
        [
            ("Q18498", WOLF),
            ("Q1", _entity(["Canis latrans"], [("Coyote", "en")])),
            ("Q2", _entity(["Nothing here"], [("Ghost", "en")])),
            ("Q3", "{"),
        ],
        p627=[("Q18498", "3746")],
    )

    stats = ingest_common_names(db, cache, ambiguity=ambiguity)

    assert stats.processed == 4
    assert stats.matched == 2
    assert stats.skipped_no_taxon == 1
    assert stats.errors == 1
    names = dict(
        db.execute(select(CommonName.raw_name, CommonName.taxon_id).order_by(CommonName.id)).all()
    )
    assert names == {"Gray wolf": wolf, "Grey wolf": wolf, "wolf": wolf, "Coyote": coyote}
    xrefs = set(db.execute(select(CrossReference.source_identifier, CrossReference.taxon_id)).all())
    assert xrefs == {("Q18498", wolf), ("Q1", coyote)}
