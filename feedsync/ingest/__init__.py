"""Feed ingestion helpers."""

from __future__ import annotations

import functools
import pathlib

import yaml

from feedsync.ingest.models import Vocabulary

VOCABULARY_PATH = pathlib.Path(__file__).with_name("vocabulary.yml")


@functools.lru_cache(maxsize=None)
def load_vocabulary(path: pathlib.Path = VOCABULARY_PATH) -> Vocabulary:
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    options = data.get("options") or {}
    tags = data.get("status_tags") or {}
    defaults = Vocabulary(colors=frozenset(), finishes=[], categories=[])
    return Vocabulary(
        colors=frozenset(str(word).upper() for word in data.get("colors", [])),
        finishes=[(str(item["keyword"]).upper(), str(item["label"])) for item in data.get("finishes", [])],
        categories=[
            (str(item["label"]), [str(word).upper() for word in item.get("keywords", [])])
            for item in data.get("categories", [])
        ],
        generic_category=data.get("generic_category", defaults.generic_category),
        default_series=data.get("default_series", defaults.default_series),
        color_option=options.get("color", defaults.color_option),
        size_option=options.get("size", defaults.size_option),
        finish_option=options.get("finish", defaults.finish_option),
        fallback_option_value=options.get("fallback_value", defaults.fallback_option_value),
        open_tag=tags.get("open", defaults.open_tag),
        closed_tag=tags.get("closed", defaults.closed_tag),
    )
