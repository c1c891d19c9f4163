"""
Unit tests for shared utilities: sensitive field redaction, identifiers and
money helpers.
"""

import random
import re
from decimal import Decimal

import pytest

from src.business.utils import (
    format_amount_text,
    format_inr,
    format_rupees,
    from_minor_units,
    group_indian_digits,
    round_currency,
    to_decimal,
    to_minor_units,
)
from src.utils.identifiers import generate_identifier, random_base36
from src.utils.sanitizers import (
    REDACTED_PLACEHOLDER,
    is_sensitive_key,
    mask_value,
    redact_sensitive_data,
)


class TestSanitizers:
    """Sensitive key detection and masking."""

    @pytest.mark.unit
    @pytest.mark.parametrize('key', [
        'password', 'client_secret', 'apiKey', 'access-token', 'razorpay_signature',
        'CVV', 'card_number', 'CARD-NUMBER', 'cardNumber',
    ])
    def test_sensitive_keys(self, key):
        assert is_sensitive_key(key)

    @pytest.mark.unit
    @pytest.mark.parametrize('key', ['amount', 'orderId', 'currency', 'name', 'card'])
    def test_regular_keys(self, key):
        assert not is_sensitive_key(key)

    @pytest.mark.unit
    def test_mask_value(self):
        assert mask_value('secretvalue') == 'secr*******'
        assert mask_value('abcd') == REDACTED_PLACEHOLDER
        assert mask_value(1234567890) == REDACTED_PLACEHOLDER
        assert mask_value(None) == REDACTED_PLACEHOLDER

    @pytest.mark.unit
    def test_redact_does_not_mutate_input(self):
        payload = {'password': 'hunter2hunter2', 'nested': {'token': 'tok_123456'}}
        redacted = redact_sensitive_data(payload)

        assert payload['password'] == 'hunter2hunter2'
        assert payload['nested']['token'] == 'tok_123456'
        assert redacted['nested']['token'] == 'tok_******'

    @pytest.mark.unit
    def test_redact_lists(self):
        redacted = redact_sensitive_data([{'secret': 'abcdefgh'}, 'plain', 3, [{'key': 'inner-list'}]])

        assert redacted[0] == {'secret': 'abcd****'}
        assert redacted[1:3] == ['plain', 3]
        # Lists nested in lists are left untouched
        assert redacted[3] == [{'key': 'inner-list'}]

    @pytest.mark.unit
    def test_primitives_pass_through(self):
        assert redact_sensitive_data('plain message') == 'plain message'
        assert redact_sensitive_data(42) == 42
        assert redact_sensitive_data(None) is None


class TestIdentifiers:
    """Time-prefixed identifiers."""

    @pytest.mark.unit
    def test_identifier_format(self):
        identifier = generate_identifier('err')
        assert re.fullmatch(r'err_\d{13}_[0-9a-z]{7}', identifier)

    @pytest.mark.unit
    def test_suffix_length_and_determinism(self):
        first = random_base36(6, random.Random(7))
        second = random_base36(6, random.Random(7))

        assert first == second
        assert len(generate_identifier('order', 6, random.Random(7)).split('_')[-1]) == 6

    @pytest.mark.unit
    def test_identifiers_differ(self):
        assert len({generate_identifier('session') for _ in range(50)}) == 50


class TestMoneyHelpers:
    """Decimal rounding, paisa conversion and rupee formatting."""

    @pytest.mark.unit
    @pytest.mark.parametrize('value,expected', [
        (531, Decimal('531')),
        (0.1, Decimal('0.1')),
        ('45000.50', Decimal('45000.50')),
        (Decimal('8100'), Decimal('8100')),
    ])
    def test_to_decimal(self, value, expected):
        assert to_decimal(value) == expected

    @pytest.mark.unit
    @pytest.mark.parametrize('value', [True, 'abc', None])
    def test_to_decimal_rejects_non_numbers(self, value):
        with pytest.raises(ValueError):
            to_decimal(value)

    @pytest.mark.unit
    def test_round_currency_is_half_up(self):
        assert round_currency(Decimal('8100.5')) == Decimal('8101')
        assert round_currency(Decimal('8100.49')) == Decimal('8100')
        assert round_currency('2.345', 2) == Decimal('2.35')
        assert round_currency(Decimal('-2.5')) == Decimal('-3')

    @pytest.mark.unit
    def test_paisa_conversion(self):
        assert to_minor_units(53100) == 5310000
        assert to_minor_units('10.005') == 1001
        assert to_minor_units(0.1) == 10
        assert from_minor_units(5310000) == Decimal('53100')
        assert from_minor_units(150) == Decimal('1.5')

    @pytest.mark.unit
    def test_format_amount_text(self):
        assert format_amount_text(Decimal('53100.00')) == '53100'
        assert format_amount_text(Decimal('53100.50')) == '53100.5'
        assert format_amount_text(40) == '40'

    @pytest.mark.unit
    @pytest.mark.parametrize('digits,expected', [
        ('1', '1'),
        ('999', '999'),
        ('1000', '1,000'),
        ('100000', '1,00,000'),
        ('1234567', '12,34,567'),
    ])
    def test_group_indian_digits(self, digits, expected):
        assert group_indian_digits(digits) == expected

    @pytest.mark.unit
    def test_format_inr(self):
        assert format_inr(123456.5) == '₹1,23,456.50'
        assert format_inr(-1500) == '-₹1,500.00'
        assert format_inr(100, 'usd') == '$100.00'
        assert format_inr(100, 'JPY') == 'JPY 100.00'
        assert format_inr(1234567, decimals=0) == '₹12,34,567'

    @pytest.mark.unit
    def test_format_rupees(self):
        assert format_rupees(1000000) == '₹10,00,000'
        assert format_rupees(5000) == '₹5,000'
        assert format_rupees(1) == '₹1'
        assert format_rupees(Decimal('7500.5')) == '₹7,500.5'
