"""
Merchant name normalization.

The normalized form is a grouping key only and is never shown to users.
"""

import re
from typing import Optional

UNKNOWN_MERCHANT = "unknown"

_NON_ALPHANUMERIC = re.compile(r'[^0-9a-zA-Z\s]')
_WHITESPACE = re.compile(r'\s+')


def normalize_merchant_name(merchant_name: Optional[str]) -> str:
    """
    Canonicalize a raw merchant label.

    "  NETFLIX.com   Inc " -> "netflixcom inc". None, empty and
    punctuation-only labels all map to "unknown".
    """
    if not merchant_name:
        return UNKNOWN_MERCHANT
    stripped = _NON_ALPHANUMERIC.sub('', merchant_name)
    key = _WHITESPACE.sub(' ', stripped).strip().lower()
    return key or UNKNOWN_MERCHANT
