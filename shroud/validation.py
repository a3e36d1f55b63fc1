"""
Shroud v1 Input Validation

Password policy for new passwords and amount checks for payment values.

Password checks run on initialize and change_password only. Unlock
accepts whatever password the record was created with.
"""

from __future__ import annotations
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from zxcvbn import zxcvbn

from shroud.config import PasswordConfig
from shroud.constants import MAX_AMOUNT, ZXCVBN_MAX_LENGTH
from shroud.errors import ErrorCode, ValidationError

logger = logging.getLogger(__name__)

STRENGTH_LABELS = ("very weak", "weak", "fair", "strong", "very strong")

_REPEATED = re.compile(r"^(.)\1+$")
_SEQUENTIAL = re.compile(
    r"^(012|123|234|345|456|567|678|789|890|abc|bcd|cde|def)+", re.IGNORECASE
)
_INPUT_SPLIT = re.compile(r"[^0-9A-Za-z]+")


def _expand_inputs(user_inputs: Optional[Iterable[str]]) -> List[str]:
    """Each identifier plus its alphanumeric parts, e.g. an email's local part."""
    inputs = []
    for value in user_inputs or []:
        if not value:
            continue
        inputs.append(value)
        inputs.extend(part for part in _INPUT_SPLIT.split(value) if len(part) >= 3)
    return inputs


# ============================================================================
# PASSWORDS
# ============================================================================

@dataclass
class PasswordCheck:
    """Result of validate_password."""
    valid: bool
    errors: List[str] = field(default_factory=list)
    strength: int = 0  # zxcvbn score, 0-4
    strength_label: str = STRENGTH_LABELS[0]
    suggestions: List[str] = field(default_factory=list)
    warning: str = ""

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "strength": self.strength,
            "strength_label": self.strength_label,
            "suggestions": list(self.suggestions),
            "warning": self.warning,
        }


def validate_password(
    password: str,
    policy: Optional[PasswordConfig] = None,
    user_inputs: Optional[Iterable[str]] = None,
) -> PasswordCheck:
    """
    Check a new password against the policy.

    Every failed rule adds its own message to ``errors``. The zxcvbn score
    must reach ``policy.min_strength``; identifiers passed in
    ``user_inputs`` count against the score.
    """
    policy = policy or PasswordConfig()

    if not password:
        return PasswordCheck(valid=False, errors=["Password is required"])

    errors = []
    if len(password) < policy.min_length:
        errors.append(f"Password must be at least {policy.min_length} characters long")
    if policy.require_uppercase and not any(c.isupper() for c in password):
        errors.append("Password must contain at least one uppercase letter (A-Z)")
    if policy.require_lowercase and not any(c.islower() for c in password):
        errors.append("Password must contain at least one lowercase letter (a-z)")
    if policy.require_digit and not any(c.isdigit() for c in password):
        errors.append("Password must contain at least one number (0-9)")
    if policy.require_special and all(c.isalnum() for c in password):
        errors.append("Password must contain at least one special character (!@#$%^&*)")
    if _REPEATED.match(password):
        errors.append("Password cannot be all the same character")
    if _SEQUENTIAL.match(password):
        errors.append("Password cannot start with a sequence such as 123 or abc")

    inputs = _expand_inputs(user_inputs)
    result = zxcvbn(password[:ZXCVBN_MAX_LENGTH], user_inputs=inputs)
    score = int(result["score"])
    feedback = result.get("feedback") or {}
    if score < policy.min_strength:
        errors.append("Password strength is insufficient")

    return PasswordCheck(
        valid=not errors,
        errors=errors,
        strength=score,
        strength_label=STRENGTH_LABELS[score],
        suggestions=list(feedback.get("suggestions") or []),
        warning=feedback.get("warning") or "",
    )


def require_strong_password(
    password: str,
    policy: Optional[PasswordConfig] = None,
    user_inputs: Optional[Iterable[str]] = None,
) -> PasswordCheck:
    """
    validate_password, raising on failure.

    Raises:
        ValidationError: VALIDATION_FAILED with the rule messages in details
    """
    check = validate_password(password, policy, user_inputs)
    if not check.valid:
        logger.debug(f"Password rejected: {len(check.errors)} rule(s) failed")
        raise ValidationError(
            "; ".join(check.errors),
            ErrorCode.VALIDATION_FAILED,
            check.to_dict(),
        )
    return check


# ============================================================================
# AMOUNTS
# ============================================================================

def validate_amount(value) -> int:
    """
    Check a token amount in base units.

    Amounts are non-negative integers that fit a uint256. Decimal strings
    are accepted; floats and booleans are not.

    Raises:
        ValidationError: INVALID_AMOUNT
    """
    if isinstance(value, str):
        text = value.strip()
        if not (text.isascii() and text.isdigit()):
            raise ValidationError(f"Invalid amount: {value!r}", ErrorCode.INVALID_AMOUNT, {"amount": value})
        value = int(text)
    elif isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"Invalid amount: {value!r}", ErrorCode.INVALID_AMOUNT, {"amount": repr(value)})

    if value < 0 or value > MAX_AMOUNT:
        raise ValidationError(
            f"Amount out of range: {value}",
            ErrorCode.INVALID_AMOUNT,
            {"amount": str(value)}
        )
    return value
