import pytest

from nomenclador.services.normalize import (
    apply_capitalization,
    build_subgenus_form,
    clean_wiki_markup,
    determine_rank,
    find_missing_caps_words,
    generate_name_variants,
    looks_like_scientific_name,
    matches_known_scientific_name,
    normalize_common_name_for_matching,
    normalize_language_code,
    normalize_scientific_name,
    parse_scientific_name,
    remove_disambiguation_suffix,
    split_punctuation,
    upper_first,
)


# ---------------- Nombres comunes ----------------

@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Gray-Wolf (animal)", "gray wolf"),
        ("  Gray   Wolf ", "gray wolf"),
        ("gray_wolf", "gray wolf"),
        ("Steller's Sea-Lion", "stellers sea lion"),
        ("Grüner Leguan", "grüner leguan"),
    ],
)
def test_normalize_common_name(raw, expected):
    assert normalize_common_name_for_matching(raw) == expected


def test_normalize_common_name_is_idempotent():
    for raw in ("Gray-Wolf (animal)", "Darwin's Frog", "Red  fox", "Ant of 'Darwin'"):
        once = normalize_common_name_for_matching(raw)
        assert normalize_common_name_for_matching(once) == once


def test_normalize_common_name_empty_results_are_none():
    assert normalize_common_name_for_matching(None) is None
    assert normalize_common_name_for_matching("   ") is None
    assert normalize_common_name_for_matching("(disambiguation)") is None
    assert normalize_common_name_for_matching("--") is None


def test_remove_disambiguation_suffix():
    assert remove_disambiguation_suffix("Mercury (planet)") == "Mercury"
    assert remove_disambiguation_suffix("Mercury") == "Mercury"
    assert remove_disambiguation_suffix(None) == ""


def test_language_codes():
    assert normalize_language_code("eng") == "en"
    assert normalize_language_code(" ENG ") == "en"
    assert normalize_language_code("spa") == "es"
    assert normalize_language_code("en-gb") == "en-gb"
    assert normalize_language_code(None) == "en"
    assert normalize_language_code("", default="es") == "es"


# ---------------- Nombres científicos ----------------

def test_normalize_scientific_name():
    assert normalize_scientific_name("  Canis   Lupus ") == "canis lupus"
    assert normalize_scientific_name("") is None
    assert normalize_scientific_name(None) is None


def test_parse_scientific_name_with_subgenus_and_rank():
    assert parse_scientific_name("Aus (Bus) cus var. dus") == ("Aus", "Bus", "cus", "dus", "var.")
    assert parse_scientific_name("Canis lupus familiaris") == ("Canis", None, "lupus", "familiaris", None)
    assert parse_scientific_name("Canis") == ("Canis", None, None, None, None)
    assert parse_scientific_name("  ") == (None, None, None, None, None)


def test_generate_variants_for_subgenus_and_rank():
    variants = generate_name_variants("Aus", "Bus", "cus", "dus", "subsp")
    forms = {(v.normalized_form, v.variant_type) for v in variants}

    assert ("aus cus", "canonical") in forms
    assert ("aus (bus) cus", "subgenus_variant") in forms
    assert ("bus cus", "subgenus_variant") in forms
    assert ("aus cus dus", "canonical") in forms
    assert ("aus cus subsp. dus", "rank_variant") in forms
    assert ("aus cus ssp. dus", "rank_variant") in forms
    assert ("aus cus subspecies dus", "rank_variant") in forms
    assert all(v.normalized_form == v.normalized_form.lower() for v in variants)


def test_generate_variants_without_genus_is_empty():
    assert generate_name_variants(None, None, "cus") == []
    assert [v.normalized_form for v in generate_name_variants("Aus")] == ["aus"]


def test_build_subgenus_form_requires_three_parts():
    assert build_subgenus_form("Aus", "Bus", "cus") == "Aus (Bus) cus"
    assert build_subgenus_form("Aus", None, "cus") is None


@pytest.mark.parametrize(
    "explicit, genus, species, infra, expected",
    [
        ("ssp.", None, None, None, "subspecies"),
        ("var.", None, None, None, "variety"),
        ("Family", None, None, None, "family"),
        (None, "Aus", "cus", "dus", "subspecies"),
        (None, "Aus", "cus", None, "species"),
        (None, "Aus", None, None, "genus"),
        (None, None, None, None, None),
    ],
)
def test_determine_rank(explicit, genus, species, infra, expected):
    assert determine_rank(explicit, genus, species, infra) == expected


# ---------------- Clasificador ----------------

@pytest.mark.parametrize(
    "name",
    ["Canis lupus", "Panthera leo", "Canis lupus familiaris", "Quercus robur var. robur", "Ursus arctos"],
)
def test_looks_like_scientific_name_positive(name):
    assert looks_like_scientific_name(name) is True


@pytest.mark.parametrize(
    "name",
    [
        "Gray Wolf",
        "Grey Wolf",
        "gray wolf",
        "Wolf",
        "Mountain lion",
        "Aus bus-x",
        "American McDonald's Toad",
        "one two three four five",
        "",
        None,
    ],
)
def test_looks_like_scientific_name_negative(name):
    assert looks_like_scientific_name(name) is False


def test_matches_known_scientific_name():
    assert matches_known_scientific_name("canis LUPUS", "Canis lupus")
    assert matches_known_scientific_name("Canis lupus", None, "Canis", "lupus")
    assert matches_known_scientific_name("lupus", None, "Canis", "lupus")
    assert not matches_known_scientific_name("Gray wolf", "Canis lupus", "Canis", "lupus")


# ---------------- Mayúsculas ----------------

def test_split_punctuation():
    assert split_punctuation("(McDonald's)") == ("(", "McDonald's", ")")
    assert split_punctuation("toad,") == ("", "toad", ",")
    assert split_punctuation("...") == ("...", "", "")


def test_apply_capitalization_keeps_punctuation():
    rules = {"mcdonald's": "McDonald's", "american": "American"}
    assert apply_capitalization("american mcdonald's toad", rules) == "American McDonald's toad"
    assert apply_capitalization("toad (mcdonald's)", rules) == "toad (McDonald's)"
    assert apply_capitalization("GREAT  Toad", {}) == "great toad"
    assert apply_capitalization(None, rules) == ""


def test_upper_first():
    assert upper_first("american toad") == "American toad"
    assert upper_first("") == ""


def test_find_missing_caps_words_skips_first_and_last():
    assert find_missing_caps_words("steller sea lion", lambda w: False) == ["sea"]
    assert find_missing_caps_words("ant of darwin", lambda w: w == "of") == ["darwin"]
    assert find_missing_caps_words("toad (mcdonald's)", lambda w: False) == ["mcdonald's"]
    assert find_missing_caps_words("wolf", lambda w: False) == []


# ---------------- Wikitext ----------------

def test_clean_wiki_markup():
    raw = "[[Gray wolf|Grey wolf]]<ref name=a>cita</ref>{{efn|nota}}<small>x</small>"
    assert clean_wiki_markup(raw) == "Grey wolfx"
    assert clean_wiki_markup("''Canis lupus''") == "''Canis lupus''"
    assert clean_wiki_markup("''Canis lupus''", strip_italics=True) == "Canis lupus"
    assert clean_wiki_markup(None) == ""
