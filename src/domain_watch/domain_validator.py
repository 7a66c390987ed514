"""
Domain validation and normalization module.

Turns user input such as ``HTTPS://www.Example.com/`` into the canonical
name stored in the registry (``example.com``): lowercase, without scheme,
without a leading ``www.`` and without trailing slashes, IDNA-encoded when it
contains international characters.
"""

import re
from dataclasses import dataclass
from typing import Optional

import idna

from domain_watch.enums import DomainValidationErrorCode
from domain_watch.exceptions import ValidationError

SCHEME_PATTERN = re.compile(r"^[a-z][a-z0-9+.\-]*://")

# Control characters, whitespace and symbols that never occur in a host name
FORBIDDEN_CHARS_PATTERN = re.compile(
    r'[\x00-\x1f\x7f'
    r'\s'
    r'!@#$%^&*()+=\[\]{}|\\:;"\'<>,?/`~]'
)

# Labels of 1-63 chars not starting/ending with a hyphen, alphabetic or punycode TLD
DOMAIN_PATTERN = re.compile(
    r"^([a-z0-9]([a-z0-9\-]{0,61}[a-z0-9])?\.)+([a-z]{2,63}|xn--[a-z0-9\-]{1,59})$"
)


@dataclass
class DomainValidationError:
    """Structured error information for domain validation failures."""

    code: DomainValidationErrorCode
    message: str
    details: dict


@dataclass
class DomainValidationResult:
    """Result of domain validation operation."""

    valid: bool
    canonical_domain: Optional[str]
    error: Optional[DomainValidationError]


class DomainValidator:
    """
    Validates and normalizes domain names.

    Handles:
    - Lowercasing and whitespace trimming
    - Removal of URL scheme, leading ``www.`` and trailing slashes
    - IDNA encoding for international characters
    - Rejection of forbidden characters and malformed names
    """

    def validate(self, raw_domain: str) -> DomainValidationResult:
        """
        Validate and normalize a domain string.

        Args:
            raw_domain: The raw domain string to validate

        Returns:
            DomainValidationResult with validation status and canonical form or error
        """
        if not raw_domain or not raw_domain.strip():
            return self._invalid(
                DomainValidationErrorCode.EMPTY_INPUT,
                "Domain input is empty",
                {"raw_input": raw_domain},
            )

        stripped = self.strip_decorations(raw_domain)

        if FORBIDDEN_CHARS_PATTERN.search(stripped):
            return self._invalid(
                DomainValidationErrorCode.FORBIDDEN_CHARS,
                "Domain contains forbidden characters",
                {
                    "raw_input": raw_domain,
                    "forbidden_chars": FORBIDDEN_CHARS_PATTERN.findall(stripped),
                },
            )

        try:
            canonical = self.encode_idna(stripped)
        except ValidationError as e:
            return self._invalid(DomainValidationErrorCode.IDNA_ERROR, e.message, e.details)

        if not DOMAIN_PATTERN.match(canonical):
            return self._invalid(
                DomainValidationErrorCode.INVALID_FORMAT,
                f"Not a valid domain name: {canonical}",
                {"raw_input": raw_domain, "canonical": canonical},
            )

        return DomainValidationResult(valid=True, canonical_domain=canonical, error=None)

    def normalize(self, raw_domain: str) -> str:
        """
        Return the canonical form of a domain.

        Raises:
            ValidationError: If the input cannot be normalized into a valid domain
        """
        result = self.validate(raw_domain)
        if not result.valid:
            raise ValidationError(
                code=result.error.code.value,
                message=result.error.message,
                details=result.error.details,
            )
        return result.canonical_domain

    def strip_decorations(self, raw_domain: str) -> str:
        """Lowercase and remove scheme, leading ``www.`` and trailing slashes."""
        domain = raw_domain.strip().lower()
        domain = SCHEME_PATTERN.sub("", domain)
        domain = domain.rstrip("/")
        if domain.startswith("www."):
            domain = domain[len("www."):]
        return domain

    def encode_idna(self, domain: str) -> str:
        """
        Encode international domain names to their ASCII form.

        Raises:
            ValidationError: If IDNA encoding fails
        """
        if all(ord(c) < 128 for c in domain):
            return domain
        try:
            return idna.encode(domain, uts46=True).decode("ascii")
        except idna.IDNAError as e:
            raise ValidationError(
                code=DomainValidationErrorCode.IDNA_ERROR.value,
                message=f"IDNA encoding failed: {e}",
                details={"domain": domain, "idna_error": str(e)},
            )

    def is_valid(self, raw_domain: str) -> bool:
        """Check whether a string normalizes into a valid domain."""
        return self.validate(raw_domain).valid

    @staticmethod
    def _invalid(
        code: DomainValidationErrorCode, message: str, details: dict
    ) -> DomainValidationResult:
        return DomainValidationResult(
            valid=False,
            canonical_domain=None,
            error=DomainValidationError(code=code, message=message, details=details),
        )
