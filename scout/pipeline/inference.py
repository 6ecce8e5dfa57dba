"""
Field inference — which field does an enrichment result belong to?

Strategies are pure functions `(result, context) -> field key | None`,
evaluated in priority order. The first four are trusted (they read an
explicit attribution the service wrote itself); the content-shape heuristics
after them are guesses and are resolved last within an item's batch so they
never steal a field a trusted result already claimed.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from scout.pipeline.fields import ENRICHMENT_FIELDS, FIELD_DESCRIPTION_PREFIX, is_known_field
from scout.pipeline.values import extract_value, first_result_text

logger = logging.getLogger('pipeline.inference')


@dataclass
class InferenceContext:
    """Per-job knowledge: provider enrichment id → field key, and the requested keys."""
    bindings: Dict[str, str] = field(default_factory=dict)
    requested: Optional[FrozenSet[str]] = None


@dataclass(frozen=True)
class FieldMatch:
    field: str
    strategy: str
    trusted: bool


@dataclass
class ItemResolution:
    values: Dict[str, str] = field(default_factory=dict)
    dropped: int = 0


# ── Trusted strategies ───────────────────────────────────────────────────────

def from_field_tag(result: Dict, context: InferenceContext) -> Optional[str]:
    tag = (result.get('metadata') or {}).get('field')
    return tag if is_known_field(tag) else None


def from_request_binding(result: Dict, context: InferenceContext) -> Optional[str]:
    key = context.bindings.get(result.get('enrichmentId') or result.get('id') or '')
    return key if is_known_field(key) else None


def from_description_prefix(result: Dict, context: InferenceContext) -> Optional[str]:
    description = result.get('description')
    if not isinstance(description, str) or not description.startswith(FIELD_DESCRIPTION_PREFIX):
        return None
    key = description[len(FIELD_DESCRIPTION_PREFIX):].split('::', 1)[0]
    return key if is_known_field(key) else None


def from_format(result: Dict, context: InferenceContext) -> Optional[str]:
    # Only email and phone have a 1:1 format/field pairing
    fmt = result.get('format')
    return fmt if fmt in ('email', 'phone') else None


# ── Content-shape heuristics ─────────────────────────────────────────────────

_EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
_PHONE_RE = re.compile(r'^[\d\s\-\+\(\)]+$')
_LEVEL_RE = re.compile(r'^(high|medium|low)(:|$)', re.IGNORECASE)
_RANGE_RE = re.compile(r'^\d+-\d+\+?$')
_PLACE_RE = re.compile(r'^[A-Z][A-Za-z]+(?:\s+[A-Z][A-Za-z]+)*,\s*[A-Z][A-Za-z]+(?:\s+[A-Z][A-Za-z]+)*$')
_LEAD_TYPE_RE = re.compile(
    r'^(retailer|distributor|influencer|expert|investor|creator|consultant|brand|agency|platform)\b',
    re.IGNORECASE,
)
_SCORE_ONLY_RE = re.compile(r'^(10|[1-9])$')
_SCORE_LEAD_RE = re.compile(r'^(10|[1-9])\b')
_CHANNEL_PHRASES = ('linkedin dm', 'work email', 'website form', 'twitter dm')


def _text(result: Dict) -> str:
    return first_result_text(result.get('result')).strip()


def mentions_field(result: Dict, context: InferenceContext) -> Optional[str]:
    """A field key or label named in free-form description text; longest mention wins."""
    description = result.get('description')
    if not isinstance(description, str) or not description:
        return None
    lowered = description.lower()
    best, best_len = None, 0
    for key, spec in ENRICHMENT_FIELDS.items():
        for needle in (key.lower(), spec.label.lower()):
            if needle in lowered and len(needle) > best_len:
                best, best_len = key, len(needle)
    return best


_EXPLAINS = ('shows', 'due to', 'because')


def looks_like_partnership_reason(result: Dict, context: InferenceContext) -> Optional[str]:
    lowered = _text(result).lower()
    if 'partnership intent' in lowered:
        return 'partnershipIntentReason'
    if 'partnership' in lowered and any(w in lowered for w in _EXPLAINS):
        return 'partnershipIntentReason'
    return None


def looks_like_buying_reason(result: Dict, context: InferenceContext) -> Optional[str]:
    lowered = _text(result).lower()
    if 'buying intent' in lowered or 'purchase intent' in lowered:
        return 'buyingIntentReason'
    if 'intent' in lowered and 'partnership' not in lowered and any(w in lowered for w in _EXPLAINS):
        return 'buyingIntentReason'
    return None


def looks_like_email(result: Dict, context: InferenceContext) -> Optional[str]:
    return 'email' if _EMAIL_RE.match(_text(result)) else None


def looks_like_phone(result: Dict, context: InferenceContext) -> Optional[str]:
    text = _text(result)
    if _PHONE_RE.match(text) and len(re.sub(r'\D', '', text)) >= 10:
        return 'phone'
    return None


def looks_like_linkedin(result: Dict, context: InferenceContext) -> Optional[str]:
    return 'linkedinUrl' if 'linkedin.com/' in _text(result).lower() else None


def looks_like_level(result: Dict, context: InferenceContext) -> Optional[str]:
    text = _text(result)
    if not _LEVEL_RE.match(text):
        return None
    haystack = f"{text} {result.get('description') or ''}".lower()
    if 'partnership' in haystack or 'collaborat' in haystack:
        return 'partnershipIntentLevel'
    return 'buyingIntent'


def looks_like_range(result: Dict, context: InferenceContext) -> Optional[str]:
    return 'employeeCount' if _RANGE_RE.match(_text(result)) else None


def looks_like_place(result: Dict, context: InferenceContext) -> Optional[str]:
    return 'geoLocation' if _PLACE_RE.match(_text(result)) else None


def looks_like_lead_type(result: Dict, context: InferenceContext) -> Optional[str]:
    return 'leadType' if _LEAD_TYPE_RE.match(_text(result)) else None


def looks_like_overlap_score(result: Dict, context: InferenceContext) -> Optional[str]:
    text = _text(result)
    if _SCORE_ONLY_RE.match(text):
        return 'audienceOverlapScore'
    lowered = text.lower()
    if _SCORE_LEAD_RE.match(text) and ('overlap' in lowered or 'audience' in lowered):
        return 'audienceOverlapScore'
    return None


def looks_like_channel(result: Dict, context: InferenceContext) -> Optional[str]:
    lowered = _text(result).lower()
    if any(phrase in lowered for phrase in _CHANNEL_PHRASES) or lowered in ('phone', 'email'):
        return 'primaryContactChannel'
    return None


Strategy = Callable[[Dict, InferenceContext], Optional[str]]

TRUSTED_STRATEGIES: List[Tuple[str, Strategy]] = [
    ('field_tag', from_field_tag),
    ('request_binding', from_request_binding),
    ('description_prefix', from_description_prefix),
    ('format', from_format),
]

HEURISTIC_STRATEGIES: List[Tuple[str, Strategy]] = [
    ('description_mention', mentions_field),
    ('email', looks_like_email),
    ('phone', looks_like_phone),
    ('linkedin', looks_like_linkedin),
    ('level', looks_like_level),
    ('range', looks_like_range),
    ('partnership_reason', looks_like_partnership_reason),
    ('buying_reason', looks_like_buying_reason),
    ('place', looks_like_place),
    ('lead_type', looks_like_lead_type),
    ('overlap_score', looks_like_overlap_score),
    ('channel', looks_like_channel),
]

# Fields a single heuristic cannot tell apart
AMBIGUITY_GROUPS: List[FrozenSet[str]] = [
    frozenset({'buyingIntent', 'partnershipIntentLevel'}),
]

# Provider states that carry no result yet
_UNSETTLED = frozenset({'pending', 'running', 'processing', 'canceled'})


def infer_field(result: Dict, context: Optional[InferenceContext] = None) -> Optional[FieldMatch]:
    """Run the strategy cascade on one result; first match wins."""
    context = context or InferenceContext()
    for name, strategy in TRUSTED_STRATEGIES:
        key = strategy(result, context)
        if key:
            return FieldMatch(key, name, trusted=True)
    for name, strategy in HEURISTIC_STRATEGIES:
        key = strategy(result, context)
        if key:
            return FieldMatch(key, name, trusted=False)
    return None


def _sibling_for(key: str, requested: Optional[FrozenSet[str]], claimed: Dict[str, str]) -> Optional[str]:
    if requested is None:
        return None
    for group in AMBIGUITY_GROUPS:
        if key not in group:
            continue
        open_siblings = [s for s in sorted(group) if s != key and s in requested and s not in claimed]
        if len(open_siblings) == 1:
            return open_siblings[0]
    return None


def resolve_item(results: Iterable[Dict], context: Optional[InferenceContext] = None,
                 item_id: str = '') -> ItemResolution:
    """
    Resolve every enrichment result attached to one item.

    Trusted matches claim their fields first, heuristics after, each group in
    input order. A heuristic landing on a taken (or unrequested) key moves to
    the one open sibling of its ambiguity group, otherwise it is dropped.
    """
    context = context or InferenceContext()
    requested = context.requested
    resolution = ItemResolution()

    matched = []
    for result in results or []:
        if not isinstance(result, dict) or result.get('status') in _UNSETTLED:
            continue
        match = infer_field(result, context)
        if match is None:
            logger.warning("Item %s: could not attribute enrichment %s (format=%s)",
                           item_id, result.get('enrichmentId'), result.get('format'))
            resolution.dropped += 1
            continue
        matched.append((match, result))

    ordered = [m for m in matched if m[0].trusted] + [m for m in matched if not m[0].trusted]
    for match, result in ordered:
        key = match.field
        if key in resolution.values or (requested is not None and key not in requested):
            sibling = None if match.trusted else _sibling_for(key, requested, resolution.values)
            if sibling is None:
                logger.info("Item %s: dropping %s result for %s (claimed or not requested)",
                            item_id, match.strategy, key)
                resolution.dropped += 1
                continue
            logger.debug("Item %s: reassigning %s → %s", item_id, key, sibling)
            key = sibling

        value = extract_value(result, key)
        if value is None:
            continue
        resolution.values[key] = value

    return resolution
