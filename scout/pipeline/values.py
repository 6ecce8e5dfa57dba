"""
Enrichment value extraction and normalization.

NOT_FOUND is a real value ("the provider looked and found nothing"), distinct
from None ("no value known yet"). A merge never lets NOT_FOUND overwrite a
real value, and None is never written.
"""
import json
import re
from typing import Any, Dict, Optional

from scout.pipeline.fields import INTENT_FIELDS

NOT_FOUND = 'Not found'

_NOT_FOUND_EXACT = frozenset({'not found', 'n/a', 'none', 'unavailable', 'no data', 'unknown'})
_NOT_FOUND_PREFIXES = ('could not find', 'unable to find')

_LEVEL_RE = re.compile(r'\b(high|medium|low)\b')
_URGENCY_WORDS = ('actively', 'strong', 'ready', 'seeking', 'urgent', 'immediate', 'right now')
_EXPLORATION_WORDS = ('evaluating', 'considering', 'exploring')

_RANGE_RE = re.compile(r'^\d+-\d+$')
_FIRST_INT_RE = re.compile(r'\d+')

_EMPLOYEE_BUCKETS = [
    (10, '1-10'),
    (50, '11-50'),
    (200, '51-200'),
    (500, '201-500'),
    (1000, '501-1000'),
    (5000, '1001-5000'),
    (10000, '5001-10000'),
    (25000, '10001-25000'),
]


def first_result_text(result: Any) -> str:
    """
    Flatten a provider `result` to one string.

    Lists yield their first non-empty string, else the JSON of their first
    object. Dicts are JSON-encoded.
    """
    if isinstance(result, list):
        for entry in result:
            if isinstance(entry, str) and entry.strip():
                return entry
        for entry in result:
            if isinstance(entry, dict) and entry:
                return json.dumps(entry, sort_keys=True)
        return ''
    if isinstance(result, str):
        return result
    if isinstance(result, dict) and result:
        return json.dumps(result, sort_keys=True)
    if isinstance(result, (int, float)) and not isinstance(result, bool):
        return str(result)
    return ''


def is_not_found_text(text: str) -> bool:
    lowered = text.strip().lower()
    if not lowered:
        return True
    if lowered in _NOT_FOUND_EXACT:
        return True
    if lowered.startswith(_NOT_FOUND_PREFIXES):
        return True
    return lowered.startswith('no ') and 'found' in lowered


def normalize_intent(value: Any) -> Optional[str]:
    """Map free text to high / medium / low. Empty input stays unset."""
    if value is None or value == '':
        return None
    text = str(value).lower()

    match = _LEVEL_RE.search(text)
    if match:
        return match.group(1)
    if any(word in text for word in _URGENCY_WORDS):
        return 'high'
    if any(word in text for word in _EXPLORATION_WORDS):
        return 'medium'
    return 'low'


def normalize_employee_count(value: Any) -> Optional[str]:
    """Bucket a headcount. Values already shaped like "N-M" pass through; no digits → None."""
    if value is None or value == '':
        return None
    text = str(value).strip()
    if _RANGE_RE.match(text):
        return text

    match = _FIRST_INT_RE.search(text)
    if not match:
        return None
    num = int(match.group(0))
    for limit, bucket in _EMPLOYEE_BUCKETS:
        if num <= limit:
            return bucket
    return '25001+'


def normalize_value(field_key: Optional[str], raw: str) -> Optional[str]:
    if field_key in INTENT_FIELDS:
        return normalize_intent(raw)
    if field_key == 'employeeCount':
        return normalize_employee_count(raw)
    return raw.strip()


def extract_value(enrichment: Optional[Dict], field_key: Optional[str] = None) -> Optional[str]:
    """
    Value of one provider enrichment result.

    Returns NOT_FOUND for failed lookups and not-found phrasing, None when
    normalization leaves nothing to store.
    """
    if not enrichment:
        return None
    if enrichment.get('status') in ('failed', 'not_found'):
        return NOT_FOUND

    raw = first_result_text(enrichment.get('result'))
    if is_not_found_text(raw):
        return NOT_FOUND
    return normalize_value(field_key, raw)


def is_real_value(value: Any) -> bool:
    return value is not None and value != '' and value != NOT_FOUND
