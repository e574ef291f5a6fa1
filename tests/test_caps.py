import pytest
from sqlalchemy import select

from nomenclador.models import CommonName, CommonNameConflict
from nomenclador.services.caps import (
    count_caps_rules,
    detect_caps_mismatches,
    find_missing_caps,
    get_correct_capitalization,
    get_display_name,
    guess_capitalization,
    import_caps_file,
    load_caps_rules,
    parse_caps_file,
    refresh_display_names,
    upsert_caps_rule,
)
from nomenclador.services.common_names import get_common_names_for_taxon

CAPS_TXT = """\
// reglas de prueba

McDonald's // American McDonald's toad
American // American bison, American robin
Darwin's
american // duplicado: se ignora
"""


@pytest.fixture
def caps_file(tmp_path):
    path = tmp_path / "caps.txt"
    path.write_text(CAPS_TXT, encoding="utf-8")
    return str(path)


def test_parse_caps_file(caps_file):
    rules = parse_caps_file(caps_file)
    assert [(r.lowercase_word, r.correct_form, r.examples) for r in rules] == [
        ("mcdonald's", "McDonald's", "American McDonald's toad"),
        ("american", "American", "American bison, American robin"),
        ("darwin's", "Darwin's", None),
        ("american", "american", "duplicado: se ignora"),
    ]
    assert rules[0].line_number == 3


def test_parse_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        parse_caps_file(str(tmp_path / "no-existe.txt"))


def test_import_keeps_first_occurrence(db, caps_file):
    res = import_caps_file(db, caps_file)
    assert res == {"rows": 4, "inserted": 3, "skipped": 1}
    assert count_caps_rules(db) == 3
    assert get_correct_capitalization(db, "AMERICAN") == "American"
    assert get_correct_capitalization(db, "toad") is None


def test_upsert_rule_keeps_examples_when_none(db):
    upsert_caps_rule(db, "American", "American", "American bison")
    upsert_caps_rule(db, "american", "AMERICAN", None, "manual")
    assert load_caps_rules(db) == {"american": "AMERICAN"}


def test_display_name_applies_rules(db, make_taxon, add_name, caps_file):
    import_caps_file(db, caps_file)
    toad = make_taxon("Incilius mcdonaldi")
    add_name(toad, "american mcdonald's toad")
    rules = load_caps_rules(db)

    record = get_common_names_for_taxon(db, toad)[0]
    assert get_display_name(record, rules) == "American McDonald's toad"


def test_refresh_display_names_counts_changes(db, make_taxon, add_name):
    upsert_caps_rule(db, "mcdonald's", "McDonald's")
    toad = make_taxon("Incilius mcdonaldi")
    add_name(toad, "american mcdonald's toad")
    add_name(toad, "toad", source="col")
    rules = load_caps_rules(db)

    assert refresh_display_names(db, rules) == 2
    assert refresh_display_names(db, rules) == 0
    shown = {cn.raw_name: cn.display_name for cn in db.execute(select(CommonName)).scalars()}
    assert shown["american mcdonald's toad"] == "american McDonald's toad"


def test_find_missing_caps_counts_and_examples():
    names = ["steller sea lion", "steller jay", "ant of darwin", "sea of cortez", "Great sea lion"]
    missing = find_missing_caps(names, {"of": "of"})

    assert list(missing) == ["sea", "cortez", "darwin"]
    assert missing["sea"].count == 2
    assert missing["sea"].examples == ["steller sea lion", "Great sea lion"]
    assert missing["darwin"].examples == ["ant of darwin"]


def test_find_missing_caps_limits_example_text():
    names = [f"{c * 20} common toad" for c in "abc"]
    missing = find_missing_caps(names, {}, max_examples=10)
    # "toad" es la última palabra y no hay palabra de enlace: no se revisa
    assert list(missing) == ["common"]
    entry = missing["common"]
    assert entry.count == 3
    assert entry.examples == ["a" * 20 + " common toad", "b" * 20 + " common toad"]


def test_missing_word_keeps_source_capitalization():
    names = ["Southern Darwin's frog", "northern darwin's frog"]
    missing = find_missing_caps(names, {})

    assert list(missing) == ["darwin's"]
    assert missing["darwin's"].examples == names
    assert guess_capitalization("darwin's", missing["darwin's"].examples) == "Darwin's"


def test_guess_capitalization_ignores_first_word_and_defaults_to_lower():
    assert guess_capitalization("darwin's", ["Darwin's frog"]) == "darwin's"
    assert guess_capitalization("sea", ["steller sea lion"]) == "sea"
    assert guess_capitalization("cortez", ["Sea of (Cortez)"]) == "Cortez"


def test_detect_caps_mismatch(db, make_taxon, add_name):
    upsert_caps_rule(db, "mcdonald's", "McDonald's")
    toad = make_taxon("Incilius mcdonaldi")
    other = make_taxon("Aus bus")
    bad = add_name(toad, "American Mcdonald's Toad")
    add_name(other, "american mcdonald's toad", source="col")

    assert detect_caps_mismatches(db, load_caps_rules(db)) == 1
    db.flush()
    conflict = db.execute(select(CommonNameConflict)).scalar_one()
    assert conflict.conflict_type == "caps_mismatch"
    assert conflict.common_name_id_a == bad
    assert "McDonald's" in conflict.resolution_notes
