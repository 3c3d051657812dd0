"""Generation contract defaults and the layered merge used when a run is created.

The contract is opaque to the orchestration core: it is resolved once per run
(defaults ← brand preset ← run overrides), stored on the run and handed to the
stage handlers through the pipeline context.
"""

import copy
from typing import Any, Dict, List, Mapping, Optional

DEFAULT_CONTRACT: Dict[str, Any] = {
    "language": "en",
    "audience": "builders interested in AI tooling",
    "tone": "professional, concise, actionable",
    "brand": {
        "keywords": ["ClipInsightAI", "repurpose", "insights"],
        "cta": "Try ClipInsightAI to turn videos into high-performing posts.",
        "banned_terms": ["guaranteed", "get rich quick"],
        "style_notes": "Avoid hype. Use clear headings. Prefer short sentences.",
    },
    "constraints": {
        "no_fabrication": True,
        "quotes_require_timestamps": True,
        "avoid_medical_legal_financial_advice": True,
    },
    "formats": {
        "newsletter": {"length": "700-1100 words", "min_words": 700, "max_words": 1100},
        "blog": {"length": "900-1600 words", "min_words": 900, "max_words": 1600},
        "twitter_thread": {"tweets": "8-12", "min_tweets": 8, "max_tweets": 12},
        "linkedin": {"length": "150-260 words", "min_words": 150, "max_words": 260},
    },
}

_BRAND_FIELDS = ("keywords", "cta", "banned_terms", "style_notes")


def merge_contract(defaults: Mapping[str, Any], overrides: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Return a new contract with ``overrides`` layered over ``defaults``.

    Nested mappings are merged field by field; lists and scalars in the
    override replace the lower layer wholesale. ``None`` values in the
    override are ignored so a partial payload never blanks a default.
    Neither input is mutated.
    """
    merged = copy.deepcopy(dict(defaults))
    if not overrides:
        return merged
    for key, value in overrides.items():
        if value is None:
            continue
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = merge_contract(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def brand_preset_to_contract_overrides(preset_defaults: Mapping[str, Any]) -> Dict[str, Any]:
    """Translate a brand preset's flat defaults into a contract layer."""
    overrides: Dict[str, Any] = {}
    for key in ("audience", "tone", "language"):
        if preset_defaults.get(key) is not None:
            overrides[key] = preset_defaults[key]
    brand = {k: preset_defaults[k] for k in _BRAND_FIELDS if preset_defaults.get(k) is not None}
    if brand:
        overrides["brand"] = brand
    # Presets may also carry contract-shaped sections directly
    for key in ("brand", "constraints", "formats"):
        if isinstance(preset_defaults.get(key), Mapping):
            overrides[key] = merge_contract(overrides.get(key, {}), preset_defaults[key])
    return overrides


def validate_contract(contract: Mapping[str, Any]) -> List[str]:
    """Return the list of completeness problems; empty means the contract is usable."""
    errors = []
    for key in ("language", "audience", "tone"):
        if not contract.get(key):
            errors.append(f"Missing {key}")
    formats = contract.get("formats") or {}
    if not (formats.get("newsletter") or {}).get("length"):
        errors.append("Missing newsletter length constraint")
    if not (formats.get("blog") or {}).get("length"):
        errors.append("Missing blog length constraint")
    if not (formats.get("twitter_thread") or {}).get("tweets"):
        errors.append("Missing twitter thread tweet count")
    if not (formats.get("linkedin") or {}).get("length"):
        errors.append("Missing linkedin length constraint")
    return errors
