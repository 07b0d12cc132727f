"""Canonical OpenSearch index configuration."""

from __future__ import annotations

from typing import Any

from searchsync.models.document import DocumentField

MIXED_SCRIPT_ANALYZER = "mixed_script"

# Bigram tokenization keeps CJK text searchable alongside Latin words
# without an external analysis plugin.
ANALYSIS_SETTINGS: dict[str, Any] = {
    "analysis": {
        "analyzer": {
            MIXED_SCRIPT_ANALYZER: {
                "type": "custom",
                "tokenizer": "standard",
                "filter": ["cjk_width", "lowercase", "cjk_bigram"],
            }
        }
    }
}

_TEXT = {"type": "text", "analyzer": MIXED_SCRIPT_ANALYZER}
_KEYWORD = {"type": "keyword"}
_DATE = {"type": "date"}

INDEX_MAPPINGS: dict[str, Any] = {
    "properties": {
        DocumentField.ID: _KEYWORD,
        DocumentField.TYPE: _KEYWORD,
        DocumentField.TITLE: {
            **_TEXT,
            "fields": {
                "keyword": {"type": "keyword", "ignore_above": 256},
                "suggest": {"type": "completion", "analyzer": "simple"},
            },
        },
        DocumentField.CONTENT: _TEXT,
        DocumentField.DESCRIPTION: _TEXT,
        DocumentField.AUTHOR: _KEYWORD,
        DocumentField.AUTHOR_ID: _KEYWORD,
        DocumentField.TAGS: _KEYWORD,
        DocumentField.CATEGORY: _KEYWORD,
        DocumentField.STATUS: _KEYWORD,
        DocumentField.CREATED_AT: _DATE,
        DocumentField.UPDATED_AT: _DATE,
        DocumentField.METADATA: {"type": "object", "enabled": False},
    }
}

TITLE_KEYWORD_FIELD = f"{DocumentField.TITLE}.keyword"
TITLE_SUGGEST_FIELD = f"{DocumentField.TITLE}.suggest"
