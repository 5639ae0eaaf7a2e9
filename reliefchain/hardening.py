"""
ReliefChain Validation and Hardening Module

Input validation and defensive primitives shared by the registry, the ledger
and the verification capabilities:

1. Input validation for caller-supplied text, identities and counters
2. Thread-safety primitives (atomic counters)
3. Invariant enforcement for monotonic ledger values

Security Model:
    - All inputs are untrusted until validated
    - Validators report every problem, the caller decides which one wins
    - Monotonic values never go backwards
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence


# =============================================================================
# VALIDATION ERROR TYPES
# =============================================================================

class ValidationError(Exception):
    """Base exception for validation failures."""

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")


class ValidationErrors(Exception):
    """Collection of validation errors."""

    def __init__(self, errors: List[ValidationError]):
        self.errors = errors
        messages = "; ".join(f"{e.field}: {e.message}" for e in errors)
        super().__init__(f"Validation failed: {messages}")


class InvariantViolation(Exception):
    """Ledger or registry invariant violated."""
    pass


# =============================================================================
# VALIDATION RESULT
# =============================================================================

@dataclass
class ValidationResult:
    """Result of a validation operation."""
    is_valid: bool
    errors: List[ValidationError] = field(default_factory=list)
    sanitized_value: Any = None

    def raise_if_invalid(self) -> None:
        """Raise ValidationErrors if validation failed."""
        if not self.is_valid:
            raise ValidationErrors(self.errors)

    @classmethod
    def success(cls, sanitized_value: Any = None) -> 'ValidationResult':
        return cls(is_valid=True, sanitized_value=sanitized_value)

    @classmethod
    def failure(cls, errors: List[ValidationError]) -> 'ValidationResult':
        return cls(is_valid=False, errors=errors)


# =============================================================================
# INPUT VALIDATORS
# =============================================================================

class Validators:
    """Collection of input validators.

    Text is checked as given: registry strings are stored verbatim, so no
    whitespace stripping happens here.
    """

    MAX_IDENTITY_LENGTH = 256

    @classmethod
    def validate_text(
        cls,
        value: Any,
        field_name: str,
        min_length: int = 0,
        max_length: Optional[int] = None,
    ) -> ValidationResult:
        """Validate a string value against length bounds.

        With no `max_length` any length is accepted.
        """
        if not isinstance(value, str):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected string, got {type(value).__name__}", value)
            ])

        errors = []
        if len(value) < min_length:
            errors.append(ValidationError(field_name, f"Too short (min {min_length} chars)", value))
        if max_length is not None and len(value) > max_length:
            errors.append(ValidationError(field_name, f"Too long (max {max_length} chars)", value))

        if errors:
            return ValidationResult.failure(errors)
        return ValidationResult.success(value)

    @classmethod
    def validate_identity(cls, value: Any, field_name: str = "identity") -> ValidationResult:
        """Validate a principal identity (non-empty, bounded string)."""
        return cls.validate_text(value, field_name, min_length=1, max_length=cls.MAX_IDENTITY_LENGTH)

    @classmethod
    def validate_positive_int(cls, value: Any, field_name: str) -> ValidationResult:
        """Validate a strictly positive integer. Booleans are rejected."""
        if isinstance(value, bool) or not isinstance(value, int):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected integer, got {type(value).__name__}", value)
            ])
        if value <= 0:
            return ValidationResult.failure([
                ValidationError(field_name, "Must be greater than zero", value)
            ])
        return ValidationResult.success(value)

    @classmethod
    def validate_optional_height(cls, value: Any, field_name: str) -> ValidationResult:
        """Validate an optional logical-clock value (None or a non-negative int)."""
        if value is None:
            return ValidationResult.success(None)
        if isinstance(value, bool) or not isinstance(value, int):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected integer or null, got {type(value).__name__}", value)
            ])
        if value < 0:
            return ValidationResult.failure([
                ValidationError(field_name, "Cannot be negative", value)
            ])
        return ValidationResult.success(value)

    @classmethod
    def validate_string_list(
        cls,
        value: Any,
        field_name: str,
        max_items: Optional[int] = None,
        max_item_length: Optional[int] = None,
    ) -> ValidationResult:
        """Validate an ordered sequence of strings.

        A string is not accepted as a sequence of characters.
        """
        if isinstance(value, str) or not isinstance(value, Sequence):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected list of strings, got {type(value).__name__}", value)
            ])

        items = list(value)
        errors = []
        if max_items is not None and len(items) > max_items:
            errors.append(ValidationError(field_name, f"Too many items (max {max_items})", value))

        for i, item in enumerate(items):
            result = cls.validate_text(item, f"{field_name}[{i}]", max_length=max_item_length)
            errors.extend(result.errors)

        if errors:
            return ValidationResult.failure(errors)
        return ValidationResult.success(tuple(items))


# =============================================================================
# THREAD SAFETY
# =============================================================================

class AtomicCounter:
    """Thread-safe counter."""

    def __init__(self, initial: int = 0):
        self._value = initial
        self._lock = threading.Lock()

    def increment(self, delta: int = 1) -> int:
        """Atomically increment and return new value."""
        with self._lock:
            self._value += delta
            return self._value

    def get(self) -> int:
        """Get current value."""
        with self._lock:
            return self._value


# =============================================================================
# INVARIANTS
# =============================================================================

class InvariantChecker:
    """Enforces ledger invariants."""

    @staticmethod
    def check_monotonic_increase(
        field_name: str,
        old_value: int,
        new_value: int,
    ) -> None:
        """Ensure value only increases."""
        if new_value < old_value:
            raise InvariantViolation(
                f"{field_name} must be monotonically increasing: "
                f"cannot go from {old_value} to {new_value}"
            )

    @staticmethod
    def check_non_negative(field_name: str, value: int) -> None:
        """Ensure value is non-negative."""
        if value < 0:
            raise InvariantViolation(f"{field_name} cannot be negative: {value}")
