"""
PII Redaction Utility for PMS Connectors
Masks guest and cardholder data before it reaches log sinks
"""

import re
from typing import Any, Dict, Iterable, Optional


def _luhn_valid(digits: str) -> bool:
    total = 0
    for index, char in enumerate(reversed(digits)):
        value = int(char)
        if index % 2 == 1:
            value *= 2
            if value > 9:
                value -= 9
        total += value
    return total % 10 == 0


class PIIRedactor:
    """
    Regex based PII redactor for chargeback and reservation data

    Detects and redacts:
    - Primary account numbers (Luhn-checked, last four kept)
    - Email addresses
    - Phone numbers in international or (NNN) NNN-NNNN form
    - Values under sensitive keys (guest names, secrets, tokens)
    """

    EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
    PHONE_PATTERN = re.compile(
        r"(?:\+\d{1,3}[\s.-]?\(?\d{1,4}\)?(?:[\s.-]?\d{2,4}){2,4})|(?:\(\d{3}\)\s?\d{3}-\d{4})"
    )
    PAN_PATTERN = re.compile(r"\b(?:\d[ -]?){12,18}\d\b")

    DEFAULT_SENSITIVE_KEYS = (
        "guest_name",
        "cardholder_name",
        "guest_email",
        "guest_phone",
        "email",
        "phone",
        "password",
        "card_number",
        "cvv",
        "api_key",
        "api_secret",
        "client_secret",
        "secret",
        "access_token",
        "refresh_token",
        "authorization",
        "authorization_code",
        "credentials",
    )

    def __init__(
        self,
        sensitive_keys: Optional[Iterable[str]] = None,
        redact_char: str = "*",
    ):
        self.sensitive_keys = tuple(sensitive_keys or self.DEFAULT_SENSITIVE_KEYS)
        self.redact_char = redact_char

    def redact_text(self, text: str) -> str:
        """Redact PII patterns from free text"""
        if not text:
            return text

        def _mask_pan(match: "re.Match[str]") -> str:
            digits = re.sub(r"\D", "", match.group(0))
            if not _luhn_valid(digits):
                return match.group(0)
            return self.redact_char * (len(digits) - 4) + digits[-4:]

        redacted = self.PAN_PATTERN.sub(_mask_pan, text)
        redacted = self.EMAIL_PATTERN.sub("<EMAIL>", redacted)
        redacted = self.PHONE_PATTERN.sub("<PHONE>", redacted)
        return redacted

    def is_sensitive_key(self, key: str) -> bool:
        lowered = key.lower()
        return any(candidate in lowered for candidate in self.sensitive_keys)

    def redact_value(self, key: str, value: Any) -> Any:
        if value is None:
            return None
        if self.is_sensitive_key(key):
            return f"<REDACTED_{key.upper()}>"
        if isinstance(value, dict):
            return self.redact_dict(value)
        if isinstance(value, (list, tuple)):
            return [self.redact_value(key, item) for item in value]
        if isinstance(value, str):
            return self.redact_text(value)
        return value

    def redact_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Redact PII from dictionary values, recursing into nested structures"""
        return {key: self.redact_value(key, value) for key, value in data.items()}


_default_redactor: Optional[PIIRedactor] = None


def get_default_redactor() -> PIIRedactor:
    """Get or create the default PII redactor instance"""
    global _default_redactor
    if _default_redactor is None:
        _default_redactor = PIIRedactor()
    return _default_redactor


def redact_pii(text: str) -> str:
    """Convenience function to redact PII from text"""
    return get_default_redactor().redact_text(text)
