"""Translated-article contract.

The text-generation service is asked to answer with a single JSON object;
this module defines its JSON Schema and the helpers to validate it.
"""

from __future__ import annotations

from typing import Any, Dict, List

from jsonschema import Draft202012Validator

MIN_CONTENT_CHARS = 50
MIN_EXCERPT_CHARS = 30

SEO_METADATA_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["meta_title", "meta_description", "keywords"],
    "properties": {
        "meta_title": {"type": "string", "minLength": 1},
        "meta_description": {"type": "string", "minLength": 1},
        "keywords": {
            "type": "array",
            "minItems": 1,
            "items": {"type": "string", "minLength": 1},
        },
    },
    "additionalProperties": True,
}

TRANSLATED_ARTICLE_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["title", "content", "excerpt", "seo"],
    "properties": {
        "title": {"type": "string", "minLength": 1, "pattern": r"\S"},
        "content": {"type": "string", "minLength": MIN_CONTENT_CHARS},
        "excerpt": {"type": "string", "minLength": MIN_EXCERPT_CHARS},
        "seo": SEO_METADATA_SCHEMA,
    },
    "additionalProperties": True,
}

_ARTICLE_VALIDATOR = Draft202012Validator(TRANSLATED_ARTICLE_SCHEMA)
_SEO_VALIDATOR = Draft202012Validator({"$schema": "https://json-schema.org/draft/2020-12/schema", **SEO_METADATA_SCHEMA})


def _collect(validator: Draft202012Validator, payload: Any) -> List[str]:
    errors = []
    for e in sorted(validator.iter_errors(payload), key=lambda x: [str(p) for p in x.path]):
        path = ".".join(str(p) for p in e.path) if e.path else "<root>"
        errors.append(f"{path}: {e.message}")
    return errors


def validate_translated_article(payload: Any) -> List[str]:
    """Return a list of human-readable validation errors (empty means valid)."""
    return _collect(_ARTICLE_VALIDATOR, payload)


def validate_seo_metadata(payload: Any) -> List[str]:
    return _collect(_SEO_VALIDATOR, payload)
