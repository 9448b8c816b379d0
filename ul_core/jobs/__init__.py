from __future__ import annotations

from ul_core.jobs.translate_job import (
    TranslationRunSummary,
    parse_translation_reply,
    retranslate_keys,
    translate_missing_values,
)

__all__ = ["TranslationRunSummary", "parse_translation_reply", "retranslate_keys", "translate_missing_values"]
