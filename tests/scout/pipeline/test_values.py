"""Tests for scout.pipeline.values — extraction, not-found sentinel, normalization."""
import pytest

from scout.pipeline.values import (
    NOT_FOUND, extract_value, first_result_text, is_not_found_text,
    normalize_employee_count, normalize_intent,
)


class TestEmployeeCount:
    """Headcount bucketing."""

    @pytest.mark.parametrize('raw, bucket', [
        ('37', '11-50'),
        ('10', '1-10'),
        ('about 180 employees', '51-200'),
        ('1000', '501-1000'),
        ('20000', '10001-25000'),
        ('80000', '25001+'),
        (250, '201-500'),
    ])
    def test_buckets(self, raw, bucket):
        assert normalize_employee_count(raw) == bucket

    def test_range_unchanged(self):
        assert normalize_employee_count('501-1000') == '501-1000'

    def test_no_digits_is_unset(self):
        assert normalize_employee_count('a handful') is None
        assert normalize_employee_count('') is None


class TestIntent:
    """Intent text → high / medium / low."""

    def test_urgency_vocabulary(self):
        assert normalize_intent('actively evaluating vendors right now') == 'high'

    def test_explicit_level_wins(self):
        assert normalize_intent('Medium: exploring options') == 'medium'
        assert normalize_intent('LOW') == 'low'

    def test_level_words_need_word_boundaries(self):
        # "follow" contains "low" but is not a level word
        assert normalize_intent('They follow the market closely') == 'low'

    def test_exploration_vocabulary(self):
        assert normalize_intent('considering a new supplier') == 'medium'

    def test_default_low(self):
        assert normalize_intent('no signals') == 'low'

    def test_empty_unset(self):
        assert normalize_intent('') is None


class TestNotFound:
    """Canonical not-found phrasing."""

    @pytest.mark.parametrize('text', [
        'Not found', 'N/A', 'none', 'Unavailable', 'no data', 'unknown',
        'Could not find an email', 'Unable to find a phone number',
        'No LinkedIn profile found', '   ',
    ])
    def test_patterns(self, text):
        assert is_not_found_text(text)

    def test_real_values(self):
        assert not is_not_found_text('Nordic Foods')
        assert not is_not_found_text('no-reply@acme.com')


class TestExtractValue:
    """One provider enrichment result → stored value."""

    def test_first_non_empty_string(self):
        assert extract_value({'status': 'completed', 'result': ['', 'jane@acme.com']}, 'email') == 'jane@acme.com'

    def test_failed_status(self):
        assert extract_value({'status': 'failed', 'result': ['x']}, 'email') == NOT_FOUND

    def test_empty_result(self):
        assert extract_value({'status': 'completed', 'result': []}, 'email') == NOT_FOUND

    def test_object_result_json(self):
        assert extract_value({'status': 'completed', 'result': [{'b': 1, 'a': 2}]}) == '{"a": 2, "b": 1}'
        assert first_result_text({'k': 'v'}) == '{"k": "v"}'

    def test_field_normalization(self):
        assert extract_value({'status': 'completed', 'result': ['High']}, 'buyingIntent') == 'high'
        assert extract_value({'status': 'completed', 'result': ['37']}, 'employeeCount') == '11-50'

    def test_unbucketable_employee_count_unset(self):
        assert extract_value({'status': 'completed', 'result': ['mid-sized']}, 'employeeCount') is None

    def test_none(self):
        assert extract_value(None) is None
