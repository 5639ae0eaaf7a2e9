"""
Validators and concurrency primitives.
"""

import threading

import pytest

from reliefchain.hardening import (
    AtomicCounter,
    InvariantChecker,
    InvariantViolation,
    ValidationErrors,
    Validators,
)


class TestValidators:
    """Tests for input validators."""

    def test_text_bounds(self):
        assert Validators.validate_text("abc", "f", min_length=1, max_length=3).is_valid
        assert not Validators.validate_text("", "f", min_length=1).is_valid
        assert not Validators.validate_text("abcd", "f", max_length=3).is_valid

    def test_text_unbounded_without_max(self):
        assert Validators.validate_text("x" * 100_000, "notes").is_valid
        assert Validators.validate_string_list(["t" * 5000], "tags").is_valid

    def test_text_not_stripped(self):
        result = Validators.validate_text("  padded  ", "f")
        assert result.sanitized_value == "  padded  "

    def test_text_type(self):
        result = Validators.validate_text(42, "f")
        assert not result.is_valid
        assert result.errors[0].field == "f"

    def test_identity(self):
        assert Validators.validate_identity("org").is_valid
        assert not Validators.validate_identity("").is_valid
        assert not Validators.validate_identity("x" * 257).is_valid

    def test_positive_int(self):
        assert Validators.validate_positive_int(1, "q").is_valid
        assert not Validators.validate_positive_int(0, "q").is_valid
        assert not Validators.validate_positive_int(True, "q").is_valid
        assert not Validators.validate_positive_int("5", "q").is_valid

    def test_optional_height(self):
        assert Validators.validate_optional_height(None, "e").is_valid
        assert Validators.validate_optional_height(0, "e").is_valid
        assert not Validators.validate_optional_height(-1, "e").is_valid
        assert not Validators.validate_optional_height(False, "e").is_valid

    def test_string_list(self):
        result = Validators.validate_string_list(["a", "b"], "tags", max_items=2, max_item_length=1)
        assert result.sanitized_value == ("a", "b")
        assert not Validators.validate_string_list("ab", "tags").is_valid
        assert not Validators.validate_string_list(["a", 1], "tags").is_valid
        assert not Validators.validate_string_list(["a"] * 3, "tags", max_items=2).is_valid

    def test_raise_if_invalid(self):
        with pytest.raises(ValidationErrors) as exc_info:
            Validators.validate_identity("", "caller").raise_if_invalid()
        assert "caller" in str(exc_info.value)


class TestAtomicCounter:
    """Tests for AtomicCounter."""

    def test_concurrent_increments(self):
        counter = AtomicCounter()

        def work():
            for _ in range(1000):
                counter.increment()

        threads = [threading.Thread(target=work) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert counter.get() == 8000


class TestInvariantChecker:

    def test_monotonic(self):
        InvariantChecker.check_monotonic_increase("h", 1, 1)
        with pytest.raises(InvariantViolation):
            InvariantChecker.check_monotonic_increase("h", 2, 1)

    def test_non_negative(self):
        with pytest.raises(InvariantViolation):
            InvariantChecker.check_non_negative("h", -1)
