"""Best-effort extraction of catalog fields from free-text feed values.

The feed has no taxonomy, so every function here is a heuristic. None of them
raise on odd input: they return ``None`` ("not found") and callers pick a
default.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from feedsync.ingest.models import FeedItem, Vocabulary
from feedsync.utils.text import collapse_spaces, fold

MODEL_CODE_RE = re.compile(r"^\s*([A-Za-z]{2}\d{3,5})\b")
NAME_PREFIX_RE = re.compile(r"^\s*([A-Za-z0-9]+)\s*-\s*(?:([A-Z]{3})\s+)?(.*)$", re.DOTALL)
TAG_RE = re.compile(r"<[^>]+>")
TOKEN_RE = re.compile(r"[^\W_]+", re.UNICODE)
TITLE_SEPARATOR = " – "


@dataclass(frozen=True, slots=True)
class Extraction:
    value: str
    source: str


@dataclass(slots=True)
class ItemTraits:
    family_key: str
    title: str
    product_type: str
    model_code: str
    series: str
    color: Extraction | None
    finish: Extraction | None


def _tokens(text: str) -> list[str]:
    return TOKEN_RE.findall(text or "")


def _split_prefix(name: str) -> tuple[str, str, str]:
    """Split ``"MN002 - CST Loafer ..."`` into code, series and the rest."""
    match = NAME_PREFIX_RE.match(name or "")
    if not match or not MODEL_CODE_RE.match(match.group(1)):
        return "", "", (name or "").strip()
    return match.group(1), match.group(2) or "", match.group(3).strip()


def extract_color(name: str, vocab: Vocabulary) -> Extraction | None:
    words = (name or "").split()
    matched: list[str] = []
    while words and fold(words[-1].strip(".,;:()")) in vocab.colors:
        matched.insert(0, fold(words.pop().strip(".,;:()")))
    if not matched:
        return None
    return Extraction(" ".join(matched), "name")


def extract_finish(name: str, description: str, vocab: Vocabulary) -> Extraction | None:
    for source, text in (("name", name), ("description", TAG_RE.sub(" ", description or ""))):
        folded = {fold(token) for token in _tokens(text)}
        for keyword, label in vocab.finishes:
            if keyword in folded:
                return Extraction(label, source)
    return None


def extract_model_code(name: str, mpn: str = "", product_code: str = "") -> Extraction | None:
    match = MODEL_CODE_RE.match(name or "")
    if match:
        return Extraction(match.group(1).upper(), "name")
    if (mpn or "").strip():
        return Extraction(mpn.strip(), "mpn")
    if (product_code or "").strip():
        return Extraction(product_code.strip(), "product_code")
    return None


def extract_series(name: str) -> Extraction | None:
    _, series, _ = _split_prefix(name)
    if not series:
        return None
    return Extraction(series, "name")


def classify(texts: Iterable[str], vocab: Vocabulary) -> Extraction | None:
    folded: set[str] = set()
    for text in texts:
        folded.update(fold(token) for token in _tokens(TAG_RE.sub(" ", text or "")))
    for label, keywords in vocab.categories:
        for keyword in keywords:
            if keyword in folded:
                return Extraction(label, keyword)
    return None


def _strip_colors(words: list[str], vocab: Vocabulary) -> list[str]:
    while words and fold(words[-1].strip(".,;:()")) in vocab.colors:
        words.pop()
    while words and fold(words[0].strip(".,;:()")) in vocab.colors:
        words.pop(0)
    return words


def build_title(name: str, brand: str, code: str, vocab: Vocabulary) -> str:
    """``"MN002 - CST Loafer Deri SIYAH"`` -> ``"Loafer Deri – CST BRAND MN002"``."""
    name_code, series, core = _split_prefix(name)
    words = _strip_colors(core.split(), vocab)
    if words and series and words[0] == series:
        words.pop(0)
    if words and series and words[-1] == series:
        words.pop()
    suffix = collapse_spaces(f"{series or vocab.default_series} {(brand or '').upper()} {code or name_code}")
    core_text = collapse_spaces(" ".join(words))
    if not core_text:
        return suffix
    return f"{core_text}{TITLE_SEPARATOR}{suffix}"


def tag_safe(value: str) -> str:
    """Shopify splits tag strings on commas, so keys must not carry one."""
    return collapse_spaces(value.replace(",", " "))


def family_key(brand: str, code: str, finish: str | None = None) -> str:
    parts = [fold(brand or ""), fold(code or "")]
    if finish:
        parts.append(fold(finish))
    return "|".join(tag_safe(part) for part in parts)


def describe_item(item: FeedItem, vocab: Vocabulary, *, include_finish: bool = False) -> ItemTraits:
    code = extract_model_code(item.name, item.mpn, item.product_code)
    series = extract_series(item.name)
    color = extract_color(item.name, vocab)
    finish = extract_finish(item.name, item.description, vocab)
    category = classify([item.name, item.main_category, item.category], vocab)
    code_value = code.value if code else ""
    title = build_title(item.name, item.brand, code_value, vocab)
    if code_value:
        key = family_key(item.brand, code_value, finish.value if include_finish and finish else None)
    else:
        key = tag_safe(fold(title))
    return ItemTraits(
        family_key=key,
        title=title,
        product_type=category.value if category else vocab.generic_category,
        model_code=code_value,
        series=series.value if series else vocab.default_series,
        color=color,
        finish=finish,
    )
