# nomenclador/services/normalize.py
from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Callable, List, Mapping, Optional, Tuple

# --------------------- Expresiones ---------------------
_WS = re.compile(r"\s+")
_DISAMBIG_SUFFIX = re.compile(r"\s*\([^)]+\)\s*$")
_WORD_BREAKS = re.compile(r"[\s\-_]+")
_NON_WORD = re.compile(r"[^\w ]+")
_SUBGENUS = re.compile(r"^(\S+)\s*\((\S+)\)\s+(.+)$")
_RANK_MARKER = re.compile(
    r"^(var\.|subsp\.|ssp\.|spp\.|f\.|fo\.|subf\.|nothosubsp\.|nothovar\.|cv\.|cultivar|variety|subspecies|forma?)$",
    re.IGNORECASE,
)

# palabras de enlace: si aparecen, la última palabra también se revisa ("Ant of Darwin")
LINKING_WORDS = frozenset({"of", "de", "del", "di", "from"})

_EPITHET_ENDINGS = ("ii", "ae", "is", "us", "um", "a", "ensis", "oides", "ica", "icum", "icus")
_GENUS_ENDINGS = ("us", "a", "um", "is", "on", "ia", "ops", "yx", "ax")

# ISO 639-2/3 → ISO 639-1
_LANGUAGE_CODES = {
    "eng": "en",
    "fra": "fr", "fre": "fr",
    "spa": "es",
    "deu": "de", "ger": "de",
    "por": "pt",
    "ita": "it",
    "nld": "nl", "dut": "nl",
    "rus": "ru",
    "zho": "zh", "chi": "zh",
    "jpn": "ja",
    "ara": "ar",
}


# --------------------- Nombres científicos ---------------------

def normalize_scientific_name(raw: Optional[str]) -> Optional[str]:
    """Forma canónica: espacios colapsados y minúsculas. None si queda vacío."""
    if raw is None:
        return None
    parts = raw.split()
    if not parts:
        return None
    return " ".join(parts).lower()


def build_scientific_name_from_parts(
    genus: Optional[str], species: Optional[str], infra_name: Optional[str] = None
) -> Optional[str]:
    parts = [p.strip() for p in (genus, species, infra_name) if p and p.strip()]
    return " ".join(parts) if parts else None


def build_subgenus_form(
    genus: Optional[str],
    subgenus: Optional[str],
    species: Optional[str],
    infra_name: Optional[str] = None,
) -> Optional[str]:
    """'Genus (Subgenus) species [infra]'; exige género, subgénero y especie."""
    if not (genus and genus.strip() and subgenus and subgenus.strip() and species and species.strip()):
        return None
    s = f"{genus.strip()} ({subgenus.strip()}) {species.strip()}"
    if infra_name and infra_name.strip():
        s += f" {infra_name.strip()}"
    return s


def normalize_rank_label(label: Optional[str]) -> Optional[str]:
    if not label or not label.strip():
        return None
    label = label.strip()
    lower = label.lower().rstrip(".")
    if lower in ("var", "variety"):
        return "var."
    if lower in ("subsp", "ssp", "subspecies"):
        return "subsp."
    if lower in ("f", "fo", "forma", "form"):
        return "f."
    if lower in ("subf", "subforma"):
        return "subf."
    if lower in ("cv", "cultivar"):
        return "cv."
    if lower in ("nothosubsp", "nothovar"):
        return lower + "."
    return label if label.endswith(".") else label + "."


def _alternative_rank_labels(label: str) -> Tuple[str, ...]:
    lower = label.lower().rstrip(".")
    return {
        "var": ("variety",),
        "subsp": ("ssp.", "subspecies"),
        "ssp": ("subsp.", "subspecies"),
        "f": ("fo.", "forma"),
    }.get(lower, ())


@dataclass(frozen=True)
class NameVariant:
    original_form: str
    normalized_form: str
    # canonical | subgenus_variant | rank_variant
    variant_type: str


def parse_scientific_name(
    name: Optional[str],
) -> Tuple[Optional[str], Optional[str], Optional[str], Optional[str], Optional[str]]:
    """Descompone en (género, subgénero, especie, infra, etiqueta de rango)."""
    if not name or not name.strip():
        return None, None, None, None, None
    rest = name.strip()
    genus = subgenus = species = infra = rank_label = None

    m = _SUBGENUS.match(rest)
    if m:
        genus, subgenus, rest = m.group(1), m.group(2), m.group(3)

    parts = rest.split()
    if not parts:
        return genus, subgenus, None, None, None

    i = 0
    if genus is None:
        genus = parts[0]
        i = 1
    if len(parts) > i:
        species = parts[i]
        i += 1

    for j in range(i, len(parts)):
        part = parts[j]
        if _RANK_MARKER.match(part):
            rank_label = normalize_rank_label(part)
            if j + 1 < len(parts):
                infra = parts[j + 1]
            break
        if infra is None and "." not in part and len(part) > 1 and part[0].islower():
            infra = part

    return genus, subgenus, species, infra, rank_label


def generate_name_variants(
    genus: Optional[str],
    subgenus: Optional[str] = None,
    species: Optional[str] = None,
    infra: Optional[str] = None,
    rank_label: Optional[str] = None,
) -> List[NameVariant]:
    """Formas alternativas con las que otra fuente puede escribir el mismo nombre."""
    out: List[NameVariant] = []
    if not genus or not genus.strip():
        return out

    genus = genus.strip()
    subgenus = (subgenus or "").strip() or None
    species = (species or "").strip() or None
    infra = (infra or "").strip() or None
    rank_label = normalize_rank_label(rank_label)

    def add(form: str, kind: str) -> None:
        out.append(NameVariant(form, normalize_scientific_name(form), kind))

    if species:
        add(f"{genus} {species}", "canonical")
        if subgenus:
            add(f"{genus} ({subgenus}) {species}", "subgenus_variant")
            # por si el subgénero fue elevado a género
            add(f"{subgenus} {species}", "subgenus_variant")
        if infra:
            add(f"{genus} {species} {infra}", "canonical")
            if rank_label:
                add(f"{genus} {species} {rank_label} {infra}", "rank_variant")
                for alt in _alternative_rank_labels(rank_label):
                    add(f"{genus} {species} {alt} {infra}", "rank_variant")
            if subgenus:
                add(f"{genus} ({subgenus}) {species} {infra}", "subgenus_variant")
    else:
        add(genus, "canonical")
        if subgenus:
            add(f"{genus} ({subgenus})", "subgenus_variant")
    return out


def determine_rank(
    explicit_rank: Optional[str],
    genus: Optional[str] = None,
    species: Optional[str] = None,
    infra: Optional[str] = None,
) -> Optional[str]:
    if explicit_rank and explicit_rank.strip():
        lower = explicit_rank.strip().lower()
        for key in ("kingdom", "phylum", "class", "order", "family", "genus"):
            if key in lower:
                return key
        if "subsp" in lower or "ssp" in lower:
            return "subspecies"
        if "var" in lower:
            return "variety"
        if "form" in lower or lower in ("f", "f."):
            return "form"
        if "species" in lower:
            return "species"
    if infra and infra.strip():
        return "subspecies"
    if species and species.strip():
        return "species"
    if genus and genus.strip():
        return "genus"
    return None


# --------------------- Clasificador: ¿parece nombre científico? ---------------------

def looks_like_scientific_name(name: Optional[str]) -> bool:
    """Heurística para descartar nombres comunes que en realidad son binomios.

    Reglas, en orden:
      1. 2 a 4 palabras
      2. primera palabra con mayúscula inicial
      3. segunda palabra sin mayúsculas
      4. con 3+ palabras, la tercera decide (minúsculas/punto → sí, mayúscula → no)
      5. terminación latina del epíteto
      6. terminación latina del género + epíteto en minúsculas
    """
    if not name:
        return False
    words = name.split()
    if len(words) < 2 or len(words) > 4:
        return False

    first, second = words[0], words[1]
    if not first[0].isupper():
        return False
    if any(c.isupper() for c in second):
        return False

    if len(words) >= 3:
        third = words[2]
        if all(c.islower() or c == "." for c in third):
            return True
        if any(c.isupper() for c in third):
            return False

    if second.lower().endswith(_EPITHET_ENDINGS):
        return True
    if first.lower().endswith(_GENUS_ENDINGS) and all(ch.islower() for ch in second):
        return True
    return False


def matches_known_scientific_name(
    name: str,
    scientific_name: Optional[str] = None,
    genus: Optional[str] = None,
    epithet: Optional[str] = None,
) -> bool:
    """Coincidencia exacta (sin mayúsculas) con el propio nombre científico del registro."""
    target = name.strip().casefold()
    if not target:
        return False
    known = [scientific_name, genus, epithet]
    if genus and epithet:
        known.append(f"{genus} {epithet}")
    return any(k and k.strip().casefold() == target for k in known)


# --------------------- Nombres comunes ---------------------

def remove_disambiguation_suffix(title: Optional[str]) -> str:
    """'Mercury (planet)' → 'Mercury'."""
    if not title:
        return ""
    return _DISAMBIG_SUFFIX.sub("", title).strip()


def normalize_common_name_for_matching(raw: Optional[str]) -> Optional[str]:
    """Clave de comparación: sin sufijo de desambiguación, casefold, solo alfanuméricos.

    Guiones, guiones bajos y espacios cuentan como separador de palabra, así
    "Gray-Wolf" y "gray wolf" comparten clave. Idempotente.
    """
    if raw is None:
        return None
    s = remove_disambiguation_suffix(raw).casefold()
    s = _WORD_BREAKS.sub(" ", s)
    s = _NON_WORD.sub("", s)
    s = _WS.sub(" ", s).strip()
    return s or None


def normalize_language_code(code: Optional[str], default: str = "en") -> str:
    if not code or not code.strip():
        return default
    lower = code.strip().lower()
    return _LANGUAGE_CODES.get(lower, lower)


# --------------------- Mayúsculas (palabras y puntuación) ---------------------

def _is_punct(ch: str) -> bool:
    return unicodedata.category(ch).startswith("P")


def split_punctuation(token: str) -> Tuple[str, str, str]:
    """('(', 'core', ')') separando la puntuación inicial y final del token."""
    start = 0
    end = len(token)
    while start < end and _is_punct(token[start]):
        start += 1
    while end > start and _is_punct(token[end - 1]):
        end -= 1
    return token[:start], token[start:end], token[end:]


def find_missing_caps_words(name: Optional[str], has_rule: Callable[[str], bool]) -> List[str]:
    """Palabras interiores que podrían necesitar regla de mayúsculas.

    La primera palabra se omite siempre (va capitalizada de todos modos) y la
    última solo se revisa si hay palabra de enlace o trae puntuación.
    """
    if not name:
        return []
    raw_tokens = name.lower().split(" ")
    raw_tokens = [t for t in raw_tokens if t]
    words = [split_punctuation(t)[1] for t in raw_tokens]
    words = [w for w in words if w]
    if not words:
        return []

    has_linking = any(w in LINKING_WORDS for w in words)
    last_has_punct = bool(raw_tokens) and any(_is_punct(c) for c in raw_tokens[-1])
    check_last = has_linking or last_has_punct

    missing: List[str] = []
    for i, word in enumerate(words):
        if i == 0:
            continue
        if i == len(words) - 1 and not check_last:
            continue
        if not has_rule(word):
            missing.append(word)
    return missing


def apply_capitalization(name: Optional[str], rules: Mapping[str, str]) -> str:
    """Aplica las reglas por palabra; lo que no tiene regla queda en minúsculas.

    Ojo: pierde los espacios irregulares (se unen con un solo espacio).
    """
    if not name:
        return ""
    out: List[str] = []
    for token in name.split(" "):
        if not token:
            continue
        lead, core, trail = split_punctuation(token)
        lower = core.lower()
        fixed = rules.get(lower, lower) if core else ""
        out.append(f"{lead}{fixed}{trail}")
    return " ".join(out)


def upper_first(s: str) -> str:
    return s[:1].upper() + s[1:] if s else s


# --------------------- Wikitext ---------------------
_REF_BLOCK = re.compile(r"<ref[^>]*>.*?</ref>", re.DOTALL)
_REF_SELF = re.compile(r"<ref[^/>]*/>")
_WIKILINK = re.compile(r"\[\[([^\]|]*\|)?([^\]]*)\]\]")
_TEMPLATE = re.compile(r"\{\{[^}]*\}\}")
_HTML_TAG = re.compile(r"<[^>]+>")


def clean_wiki_markup(s: Optional[str], strip_italics: bool = False) -> str:
    """Quita <ref>, [[enlaces|texto]], {{plantillas}} y etiquetas HTML.

    Las comillas de cursiva ('') se conservan salvo `strip_italics`; en el
    campo 'name' de un taxobox delatan un binomio en cursiva.
    """
    if not s:
        return ""
    s = _REF_BLOCK.sub("", s)
    s = _REF_SELF.sub("", s)
    s = _WIKILINK.sub(r"\2", s)
    s = _TEMPLATE.sub("", s)
    s = _HTML_TAG.sub("", s)
    if strip_italics:
        s = s.replace("''", "")
    return s.strip()
