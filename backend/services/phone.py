"""
BharatCRM - Phone normalization

Canonical form used for duplicate detection across lead sources.

    "9876543210"        -> "+919876543210"
    "919876543210"      -> "+919876543210"
    "+91 98765 43210"   -> "+919876543210"

Heuristic, narrow to the Indian numbering plan. Other regions register
their own normalizer without touching the dedupe code.

Two phones match when their normalized forms are identical OR their last
10 digits are identical. The suffix fallback accepts some false positives
(two subscribers sharing the last 10 digits across countries) in exchange
for fewer missed duplicates.
"""

import re
from typing import Callable, Dict, Optional

DEFAULT_REGION = "IN"
SUFFIX_LENGTH = 10

_STRIP_RE = re.compile(r"[^\d+]")


def _strip(raw: Optional[str]) -> str:
    if not raw:
        return ""
    cleaned = _STRIP_RE.sub("", str(raw))
    # Only a leading + is meaningful
    if cleaned.startswith("+"):
        return "+" + cleaned[1:].replace("+", "")
    return cleaned.replace("+", "")


def normalize_phone_in(raw: Optional[str]) -> str:
    cleaned = _strip(raw)

    if len(cleaned) == 10 and cleaned[0] in "6789":
        return "+91" + cleaned
    if len(cleaned) == 12 and cleaned.startswith("91"):
        return "+" + cleaned
    if cleaned and not cleaned.startswith("+") and len(cleaned) > 10:
        return "+" + cleaned
    return cleaned


_NORMALIZERS: Dict[str, Callable[[Optional[str]], str]] = {
    "IN": normalize_phone_in,
}


def register_normalizer(region: str, func: Callable[[Optional[str]], str]) -> None:
    _NORMALIZERS[region.upper()] = func


def normalize_phone(raw: Optional[str], region_hint: Optional[str] = None) -> str:
    """Never raises; empty input gives an empty string."""
    func = _NORMALIZERS.get((region_hint or DEFAULT_REGION).upper(), normalize_phone_in)
    return func(raw)


def last_digits(phone: Optional[str], length: int = SUFFIX_LENGTH) -> str:
    digits = "".join(filter(str.isdigit, phone or ""))
    return digits[-length:]


def phone_suffix(raw: Optional[str], region_hint: Optional[str] = None) -> str:
    """Last 10 digits of the normalized form."""
    return last_digits(normalize_phone(raw, region_hint))


def phones_match(a: Optional[str], b: Optional[str], region_hint: Optional[str] = None) -> bool:
    norm_a = normalize_phone(a, region_hint)
    norm_b = normalize_phone(b, region_hint)
    if not norm_a or not norm_b:
        return False
    if norm_a == norm_b:
        return True
    suffix_a = last_digits(norm_a)
    return bool(suffix_a) and suffix_a == last_digits(norm_b)
