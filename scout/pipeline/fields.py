"""
Enrichment field taxonomy — keys, labels, provider formats, instructions, costs.

Each field's provider description is its instruction text prefixed with a
`ScoutField::{key}::` marker so results can be attributed back to the field
even when the provider drops the metadata tag.

Per-field costs follow the same pattern as the pipeline cost config: an
optional YAML file with in-memory cache and the hardcoded defaults below as
fallback.
"""
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

import yaml

from scout.config import FIELD_COSTS_PATH

logger = logging.getLogger('pipeline.fields')


FIELD_DESCRIPTION_PREFIX = 'ScoutField::'

LEVEL_OPTIONS = ({'label': 'High'}, {'label': 'Medium'}, {'label': 'Low'})


@dataclass(frozen=True)
class FieldSpec:
    key: str
    label: str
    format: str
    instructions: str
    default_cost: float
    options: Tuple[Dict, ...] = field(default_factory=tuple)

    @property
    def description(self) -> str:
        return f"{FIELD_DESCRIPTION_PREFIX}{self.key}::{self.instructions}"


_FIELDS = [
    # Contact information
    FieldSpec(
        'email', 'Work Email', 'email',
        'Find the best professional work email address for the primary contact or decision maker '
        'at this company. Return only the email address in lowercase (e.g. john.doe@company.com). '
        'If no email is found, return empty.',
        1.0,
    ),
    FieldSpec(
        'phone', 'Work Phone', 'phone',
        'Find the best work phone number for the primary contact or decision maker. Return in '
        'international format with country code (e.g. +1 555-123-4567 or +91 98765 43210). '
        'If no phone is found, return empty.',
        1.0,
    ),
    FieldSpec(
        'linkedinUrl', 'LinkedIn URL', 'url',
        'Find the LinkedIn profile URL for the primary contact or company. Return ONLY the LinkedIn '
        'URL (e.g. https://linkedin.com/company/acme or https://linkedin.com/in/johndoe). Must be a '
        'linkedin.com URL. If no LinkedIn profile is found, return empty.',
        0.5,
    ),
    FieldSpec(
        'primaryContactChannel', 'Best Contact Channel', 'text',
        'Identify the single best channel to reach this lead. Return exactly one of: "LinkedIn DM", '
        '"Work Email", "Phone", "Twitter DM", "Website Form", or "Unknown". Choose based on which '
        'channel appears most likely to get a response.',
        0.25,
    ),
    # Lead classification
    FieldSpec(
        'leadType', 'Lead Type', 'text',
        'Classify this lead into one category. Return exactly one of: "Retailer", "Distributor", '
        '"Influencer", "Creator", "Expert", "Consultant", "Investor", "Platform", "Brand", "Agency", '
        'or "Other". Use title case.',
        0.25,
    ),
    FieldSpec(
        'geoLocation', 'Location', 'text',
        'Return the most specific reliable location for this lead in "City, Country" format '
        '(e.g. "Mumbai, India", "San Francisco, USA"). If only country is known, return just the '
        'country. Use proper capitalization.',
        0.25,
    ),
    FieldSpec(
        'employeeCount', 'Company Size', 'text',
        'Estimate the company headcount range. Return exactly one of these ranges: "1-10", "11-50", '
        '"51-200", "201-500", "501-1000", "1001-5000", "5000+". Base estimate on any available '
        'signals (website, LinkedIn, news).',
        0.5,
    ),
    # Intent signals
    FieldSpec(
        'buyingIntent', 'Buying Intent', 'options',
        'Assess how likely this lead is to purchase products/services based on the referenced '
        'content. Return exactly "High", "Medium", or "Low". High = actively seeking solutions; '
        'Medium = exploring options; Low = no clear purchase signals.',
        0.75, LEVEL_OPTIONS,
    ),
    FieldSpec(
        'buyingIntentReason', 'Buying Intent Reason', 'text',
        'Explain in one concise sentence (max 20 words) why you assigned the buying intent level. '
        'Focus on specific signals observed (e.g. "Mentioned budget approval for Q1 tool purchases").',
        0.25,
    ),
    FieldSpec(
        'partnershipIntentLevel', 'Partnership Intent', 'options',
        'Assess how open this lead is to partnerships or collaborations. Return exactly "High", '
        '"Medium", or "Low". High = actively seeking partners; Medium = open to discussions; '
        'Low = no partnership signals.',
        0.25, LEVEL_OPTIONS,
    ),
    FieldSpec(
        'partnershipIntentReason', 'Partnership Intent Reason', 'text',
        'Explain in one concise sentence (max 20 words) why you assigned the partnership intent '
        'level. Reference specific signals (e.g. "Posted about seeking distribution partners in India").',
        0.25,
    ),
    FieldSpec(
        'audienceOverlapScore', 'Audience Overlap Score', 'text',
        'Estimate the audience overlap potential on a scale of 1-10, where 10 means highly '
        'overlapping target audiences. Return just the number (e.g. "7").',
        0.25,
    ),
    FieldSpec(
        'audienceOverlapReason', 'Audience Overlap Reason', 'text',
        'Explain in one concise sentence (max 20 words) why you assigned the audience overlap '
        'score. Reference specific audience characteristics.',
        0.25,
    ),
    # Influencer / creator
    FieldSpec(
        'estimatedReachBand', 'Estimated Reach', 'text',
        'Estimate the social media reach/following range. Return exactly one of: "Nano (1K-10K)", '
        '"Micro (10K-50K)", "Mid (50K-500K)", "Macro (500K-1M)", "Mega (1M+)", or "Unknown".',
        0.25,
    ),
    # Role / seniority
    FieldSpec(
        'roleSeniorityBand', 'Role Seniority', 'text',
        'Classify the seniority level. Return exactly one of: "C-Level", "VP/Director", "Manager", '
        '"Senior IC", "IC", or "Unknown".',
        0.25,
    ),
    # Investor
    FieldSpec(
        'investorIntentLevel', 'Investor Intent', 'options',
        'Assess how likely this investor is interested in this sector. Return exactly "High", '
        '"Medium", or "Low". High = actively investing in similar companies; Medium = thesis '
        'aligned; Low = no clear signals.',
        0.5, LEVEL_OPTIONS,
    ),
    FieldSpec(
        'investorIntentReason', 'Investor Intent Reason', 'text',
        'Explain in one concise sentence (max 20 words) why you assigned the investor intent level. '
        'Reference portfolio or thesis signals.',
        0.25,
    ),
    # Category fit
    FieldSpec(
        'categoryFitScore', 'Category Fit Score', 'text',
        'Rate how well this lead fits the target category on a scale of 1-10. Return just the '
        'number (e.g. "8").',
        0.25,
    ),
    FieldSpec(
        'categoryFitReason', 'Category Fit Reason', 'text',
        'Explain in one concise sentence (max 20 words) why you assigned the category fit score. '
        'Reference specific category alignment signals.',
        0.25,
    ),
]

ENRICHMENT_FIELDS: Dict[str, FieldSpec] = {spec.key: spec for spec in _FIELDS}

DEFAULT_ENRICHMENT_FIELDS = ['email', 'phone']

# Fields whose value is normalized to high / medium / low
INTENT_FIELDS = frozenset({'buyingIntent', 'partnershipIntentLevel', 'investorIntentLevel'})

# Leadset `enrichment_fields` names → field keys
LEADSET_FIELD_MAP = {
    'contact_email': 'email',
    'contact_phone': 'phone',
    'has_linkedin_messaging': 'linkedinUrl',
    'linkedin_url': 'linkedinUrl',
    'primary_contact_channel': 'primaryContactChannel',
    'lead_type': 'leadType',
    'geo_location': 'geoLocation',
    'company_size_band': 'employeeCount',
    'buying_intent_level': 'buyingIntent',
    'buying_intent_reason': 'buyingIntentReason',
    'partnership_intent_level': 'partnershipIntentLevel',
    'partnership_intent_reason': 'partnershipIntentReason',
    'audience_overlap_score': 'audienceOverlapScore',
    'audience_overlap_reason': 'audienceOverlapReason',
    'estimated_reach_band': 'estimatedReachBand',
    'role_seniority_band': 'roleSeniorityBand',
    'investor_intent_level': 'investorIntentLevel',
    'investor_intent_reason': 'investorIntentReason',
    'category_fit_score': 'categoryFitScore',
    'category_fit_reason': 'categoryFitReason',
}


def is_known_field(key) -> bool:
    return isinstance(key, str) and key in ENRICHMENT_FIELDS


def unknown_fields(keys: Iterable) -> List[str]:
    return [k for k in keys if not is_known_field(k)]


def allowed_fields_for_leadset(leadset: Optional[Dict]) -> List[str]:
    """Map a leadset's `enrichment_fields` names to field keys, order-preserving."""
    raw = (leadset or {}).get('enrichment_fields')
    if not isinstance(raw, list):
        return []
    allowed = []
    for name in raw:
        key = LEADSET_FIELD_MAP.get(name)
        if key and key in ENRICHMENT_FIELDS and key not in allowed:
            allowed.append(key)
    return allowed


def resolve_fields(requested: Optional[List[str]], allowed: Optional[List[str]] = None) -> List[str]:
    """
    Pick the final field set for an enrichment request.

    Priority: requested ∩ allowed; the allowlist itself when nothing was
    requested; defaults ∩ allowed; the allowlist; the global defaults.
    """
    cleaned = []
    for key in requested or []:
        key = key.strip() if isinstance(key, str) else ''
        if key and key not in cleaned:
            cleaned.append(key)

    candidates = cleaned
    if not cleaned and allowed:
        candidates = list(allowed)

    valid = [k for k in candidates if is_known_field(k) and (not allowed or k in allowed)]
    if valid:
        return valid

    if allowed:
        defaults = [k for k in DEFAULT_ENRICHMENT_FIELDS if k in allowed]
        return defaults or list(allowed)

    return list(DEFAULT_ENRICHMENT_FIELDS)


# ── Costs ─────────────────────────────────────────────────────────────────────

_field_costs = None


def _default_costs() -> Dict[str, float]:
    """Hardcoded fallback if YAML is missing."""
    return {key: spec.default_cost for key, spec in ENRICHMENT_FIELDS.items()}


def load_field_costs() -> Dict[str, float]:
    """Load per-field costs from YAML, with in-memory cache and hardcoded fallback."""
    global _field_costs
    if _field_costs is not None:
        return _field_costs

    costs = _default_costs()
    config_path = FIELD_COSTS_PATH or os.path.join(os.path.dirname(__file__), 'field_costs.yaml')
    try:
        with open(config_path, 'r') as f:
            loaded = yaml.safe_load(f) or {}
        for key, value in (loaded.get('costs') or {}).items():
            if key in costs:
                costs[key] = float(value)
        logger.info("Field costs loaded from YAML (version=%s)", loaded.get('version', '?'))
    except Exception as e:
        logger.warning("Field cost YAML not loaded (%s), using defaults", e)

    _field_costs = costs
    return _field_costs


def reset_field_costs():
    global _field_costs
    _field_costs = None


def get_cost(key: str) -> float:
    return load_field_costs().get(key, 0.0)


def estimate_cost(fields: Iterable[str], item_count: int) -> float:
    """Estimated credits: per-item cost of every field times the item count."""
    per_item = sum(get_cost(k) for k in fields)
    return round(per_item * max(item_count, 0), 2)
