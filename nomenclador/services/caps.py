# nomenclador/services/caps.py
from __future__ import annotations

import logging
import os
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional

from sqlalchemy import func, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.orm import Session

from ..models import CapsRule, CommonName, CommonNameConflict, Taxon, utcnow
from .common_names import CommonNameRecord
from .normalize import apply_capitalization, find_missing_caps_words, split_punctuation

log = logging.getLogger(__name__)

_COMMENT = re.compile(r"\s*//\s*")

# largo máximo de la lista de ejemplos por palabra en el reporte
MAX_EXAMPLE_CHARS = 50


@dataclass(frozen=True)
class ParsedCapsRule:
    lowercase_word: str
    correct_form: str
    examples: Optional[str]
    line_number: int


# --------------------- Archivo caps.txt ---------------------

def parse_caps_file(path: str) -> List[ParsedCapsRule]:
    """Lee líneas 'Palabra // ejemplo, ejemplo'.

    Se ignoran líneas vacías y las que empiezan con '//'. Lanza
    FileNotFoundError si el archivo no existe.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Archivo de mayúsculas no encontrado: {path}")
    rules: List[ParsedCapsRule] = []
    with open(path, encoding="utf-8") as fh:
        for n, line in enumerate(fh, start=1):
            if not line.strip() or line.lstrip().startswith("//"):
                continue
            parts = _COMMENT.split(line.rstrip("\r\n"), maxsplit=1)
            word = parts[0].strip()
            if not word:
                continue
            examples = parts[1].strip() if len(parts) > 1 else None
            rules.append(ParsedCapsRule(word.lower(), word, examples or None, n))
    return rules


def import_caps_file(db: Session, path: str) -> Dict[str, int]:
    """Carga el archivo en caps_rules. Ante duplicados gana la primera aparición."""
    parsed = parse_caps_file(path)
    seen = set()
    added = dupes = 0
    for r in parsed:
        if r.lowercase_word in seen:
            dupes += 1
            if log.isEnabledFor(logging.DEBUG):
                log.debug("caps duplicada en línea %d: %s", r.line_number, r.correct_form)
            continue
        seen.add(r.lowercase_word)
        upsert_caps_rule(db, r.lowercase_word, r.correct_form, r.examples, "caps_txt")
        added += 1
    return {"rows": len(parsed), "inserted": added, "skipped": dupes}


# --------------------- Reglas en base ---------------------

def upsert_caps_rule(
    db: Session,
    lowercase_word: str,
    correct_form: str,
    examples: Optional[str] = None,
    source: str = "caps_txt",
) -> None:
    stmt = insert(CapsRule).values(
        lowercase_word=lowercase_word.lower(),
        correct_form=correct_form,
        examples=examples,
        source=source,
        created_at=utcnow(),
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[CapsRule.lowercase_word],
        set_={
            "correct_form": stmt.excluded.correct_form,
            "examples": func.coalesce(stmt.excluded.examples, CapsRule.examples),
            "source": stmt.excluded.source,
        },
    )
    db.execute(stmt)


def load_caps_rules(db: Session) -> Dict[str, str]:
    rows = db.execute(select(CapsRule.lowercase_word, CapsRule.correct_form))
    return {w: form for w, form in rows}


def get_correct_capitalization(db: Session, word: str) -> Optional[str]:
    return db.execute(
        select(CapsRule.correct_form).where(CapsRule.lowercase_word == word.lower())
    ).scalar_one_or_none()


def count_caps_rules(db: Session) -> int:
    return db.execute(select(func.count()).select_from(CapsRule)).scalar_one()


# --------------------- Nombre para mostrar ---------------------

def get_display_name(record: CommonNameRecord, rules: Mapping[str, str]) -> str:
    """display_name (o raw_name) con las reglas de mayúsculas aplicadas."""
    return apply_capitalization(record.display_name or record.raw_name, rules)


def refresh_display_names(db: Session, rules: Mapping[str, str], language: str = "en") -> int:
    """Recalcula display_name de todas las filas del idioma. Devuelve cuántas cambiaron."""
    changed = 0
    for cn in db.execute(select(CommonName).where(CommonName.language == language)).scalars():
        fixed = apply_capitalization(cn.raw_name, rules)
        if fixed != cn.display_name:
            cn.display_name = fixed
            changed += 1
    return changed


# --------------------- Palabras sin regla ---------------------

@dataclass
class MissingCapsWord:
    count: int = 0
    examples: List[str] = field(default_factory=list)


def find_missing_caps(
    raw_names: Iterable[str], rules: Mapping[str, str], max_examples: int = 3
) -> "OrderedDict[str, MissingCapsWord]":
    """palabra → (frecuencia, ejemplos tal como vienen de la fuente), de más a menos frecuente.

    Solo sugiere; nunca modifica las reglas.
    """
    found: Dict[str, MissingCapsWord] = {}
    for name in raw_names:
        missing = find_missing_caps_words(name, lambda w: w in rules)
        for word in missing:
            entry = found.setdefault(word, MissingCapsWord())
            entry.count += 1
            ex = entry.examples
            if len(ex) < max_examples and name not in ex and sum(map(len, ex)) < MAX_EXAMPLE_CHARS:
                ex.append(name)
    return OrderedDict(sorted(found.items(), key=lambda kv: (-kv[1].count, kv[0])))


def guess_capitalization(word: str, examples: Iterable[str]) -> str:
    """Forma con mayúscula si algún ejemplo la trae así (fuera de la primera palabra).

    'darwin's' con 'Southern Darwin's frog' → "Darwin's". Si no aparece
    capitalizada, queda en minúsculas.
    """
    for example in examples:
        for token in example.split()[1:]:
            core = split_punctuation(token)[1]
            if core.lower() == word and core[:1].isupper():
                return core
    return word.lower()


def detect_caps_mismatches(db: Session, rules: Mapping[str, str], language: str = "en") -> int:
    """Registra caps_mismatch cuando la forma cruda de una palabra contradice su regla.

    Solo se miran palabras con mayúscula en el nombre crudo (las minúsculas son
    ruido habitual de las fuentes).
    """
    n = 0
    stmt = (
        select(CommonName.id, CommonName.taxon_id, CommonName.raw_name, CommonName.normalized_name)
        .join(Taxon, Taxon.id == CommonName.taxon_id)
        .where(CommonName.language == language, Taxon.validity_status == "valid")
        .order_by(CommonName.id)
    )
    for cn_id, taxon_id, raw, normalized in db.execute(stmt):
        words = raw.split()
        for word in words[1:]:
            core = split_punctuation(word)[1]
            expected = rules.get(core.lower())
            if expected and core != expected and not core.islower():
                db.add(CommonNameConflict(
                    normalized_name=normalized,
                    conflict_type="caps_mismatch",
                    taxon_id_a=taxon_id,
                    common_name_id_a=cn_id,
                    resolution_notes=f"'{core}' debería ser '{expected}'",
                ))
                n += 1
                break
    return n
