"""Input validation helpers with XSS protection"""

import re
from typing import Optional

import bleach

# Allowed HTML tags for user input
ALLOWED_TAGS = ['b', 'i', 'u', 'em', 'strong', 'p', 'br']

DANGEROUS_PATTERNS = [
    r'<script[^>]*>',
    r'javascript:',
    r'on\w+\s*=',
    r'<iframe',
]

EXTERNAL_ID_PATTERN = re.compile(r'^[1-9][0-9]{0,9}$')


class SafeStringMixin:
    """Mixin for XSS-safe string validation"""

    @staticmethod
    def sanitize_html(value: Optional[str]) -> Optional[str]:
        """Remove dangerous HTML/JavaScript"""
        if not value:
            return value
        return bleach.clean(value, tags=ALLOWED_TAGS, strip=True)

    @staticmethod
    def validate_no_script(value: Optional[str]) -> Optional[str]:
        """Block common XSS patterns"""
        if not value:
            return value

        for pattern in DANGEROUS_PATTERNS:
            if re.search(pattern, value, re.IGNORECASE):
                raise ValueError("Invalid characters detected")

        return value

    @classmethod
    def clean_text(cls, value: Optional[str]) -> Optional[str]:
        return cls.sanitize_html(cls.validate_no_script(value))


def is_valid_external_id(value) -> bool:
    """TMDB ids are positive integers."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return value > 0
    return isinstance(value, str) and bool(EXTERNAL_ID_PATTERN.match(value.strip()))
