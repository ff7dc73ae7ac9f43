"""Tests for the token alphabet codec.

Tests cover:
- Token and PIN generation (length, character set)
- Normalization and display formatting
- Well-formedness checks
"""

import pytest

from qslconfirm.services.alphabet import (
    DEFAULT_TOKEN_LENGTH,
    TOKEN_ALPHABET,
    format_token,
    generate_pin,
    generate_token,
    is_well_formed,
    normalize_token,
)


class TestGeneration:
    """Tests for random token and PIN generation."""

    def test_alphabet_excludes_ambiguous_letters(self):
        """I and O are left out so they cannot be confused with 1 and 0."""
        assert "I" not in TOKEN_ALPHABET
        assert "O" not in TOKEN_ALPHABET
        assert len(set(TOKEN_ALPHABET)) == len(TOKEN_ALPHABET)

    def test_generate_token_default_length(self):
        token = generate_token()
        assert len(token) == DEFAULT_TOKEN_LENGTH
        assert set(token) <= set(TOKEN_ALPHABET)

    def test_generate_token_custom_length(self):
        assert len(generate_token(16)) == 16

    def test_generate_token_is_random(self):
        tokens = {generate_token() for _ in range(50)}
        assert len(tokens) == 50

    def test_generate_pin_is_six_digits(self):
        pin = generate_pin()
        assert len(pin) == 6
        assert pin.isdigit()

    def test_generate_pin_keeps_leading_zeros(self):
        """PINs are strings, so every draw has the requested length."""
        assert all(len(generate_pin(4)) == 4 for _ in range(200))


class TestNormalization:
    """Tests for normalize_token and format_token."""

    def test_format_groups_by_four(self):
        assert format_token("ABCD2345EF") == "ABCD-2345-EF"

    def test_format_exact_multiple(self):
        assert format_token("ABCD2345") == "ABCD-2345"

    @pytest.mark.parametrize(
        "value",
        ["abcd-2345-ef", " ABCD 2345 EF ", "ABCD-2345-EF", "abcd2345ef", "AB-CD-23-45-EF"],
    )
    def test_normalize_variants(self, value):
        assert normalize_token(value) == "ABCD2345EF"

    def test_normalize_is_idempotent(self):
        once = normalize_token(" ab-cd 23 ")
        assert normalize_token(once) == once

    def test_normalize_format_round_trip(self):
        token = generate_token()
        assert normalize_token(format_token(token)) == normalize_token(token)


class TestWellFormed:
    """Tests for is_well_formed."""

    def test_accepts_display_form(self):
        assert is_well_formed("ABCD-2345-EF")

    def test_rejects_wrong_length(self):
        assert not is_well_formed("ABCD2345")

    def test_rejects_excluded_letters(self):
        assert not is_well_formed("ABCD2345EO")
        assert not is_well_formed("IBCD2345EF")

    def test_rejects_punctuation(self):
        assert not is_well_formed("ABCD2345E!")
