#!/usr/bin/env python3
"""
Text, Vendor and Identifier Normalization

Canonical forms used by every comparison in the matching pipeline:

- normalize_text: lowercase ASCII alphanumerics separated by single spaces
- normalize_vendor: normalize_text minus legal-form suffixes and stop words
- canon_id: uppercase identifier with all whitespace removed (IBAN, e2e id)
- extract_invoice_no / match_invoice_no_in_text: conservative invoice
  number detection in free-text remittance information
- vendor_compatible: token-overlap comparison of two party names
"""

import re
import unicodedata

VENDOR_SUFFIXES = frozenset(
    {
        "gmbh",
        "mbh",
        "ag",
        "kg",
        "gbr",
        "ohg",
        "ug",
        "ltd",
        "limited",
        "inc",
        "corp",
        "co",
        "company",
        "sarl",
        "sa",
        "bv",
        "nv",
        "oy",
        "ab",
        "aps",
        "plc",
        "llc",
        "kgaa",
        "eg",
        "ev",
    }
)

VENDOR_STOP_TOKENS = frozenset({"the", "and", "und", "of", "fur", "zum", "zur", "bei"})

INVOICE_TRIGGERS = ("rechnung", "rg", "re", "invoice", "inv", "beleg", "ref", "referenz", "refer")
INVOICE_NUMBER_MARKERS = ("nr", "no")

VENDOR_TOKEN_ALIASES = {
    "tankstelle": "fuelstation",
    "station": "fuelstation",
}

GENERIC_SHARED_TOKENS = frozenset(
    {
        "fuelstation",
        "karte",
        "card",
        "shop",
        "store",
        "online",
        "payment",
        "zahlung",
        "invoice",
        "rechnung",
        "service",
        "services",
    }
)

_STRONG_INVOICE_TOKEN = re.compile(r"^[A-Z0-9][A-Z0-9/_-]{3,25}$")
_WEAK_INVOICE_TOKEN = re.compile(r"^[A-Z0-9/_-]+$")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_NON_ALNUM_INVOICE = re.compile(r"[^a-z0-9/_\-]+")
_NON_ALNUM_UPPER = re.compile(r"[^A-Z0-9]")
_WHITESPACE = re.compile(r"\s+")


def strip_diacritics(value: str) -> str:
    """Decompose (NFKD) and drop combining marks: 'Müller' -> 'Muller'."""
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_text(value: str | None) -> str:
    """
    Normalize free text for keyword and equality checks.

    Examples:
        normalize_text("  Rechnung Nr. 4711/B ") -> "rechnung nr 4711 b"
        normalize_text("Müller GmbH") -> "muller gmbh"
    """
    if not value:
        return ""
    lowered = strip_diacritics(str(value).strip().lower())
    return _NON_ALNUM.sub(" ", lowered).strip()


def tokenize(value: str) -> list[str]:
    return [token for token in value.split(" ") if token]


def normalize_vendor(value: str | None) -> str:
    """
    Normalize a party name and drop legal-form suffixes and stop words.

    Example:
        normalize_vendor("Müller & Söhne GmbH") -> "muller sohne"
    """
    base = normalize_text(value)
    if not base:
        return ""
    tokens = [t for t in tokenize(base) if t not in VENDOR_SUFFIXES and t not in VENDOR_STOP_TOKENS]
    return " ".join(tokens)


def canon_id(value: str | None) -> str:
    """Canonical identifier form: trimmed, uppercase, no whitespace."""
    if not value:
        return ""
    return _WHITESPACE.sub("", str(value).strip().upper())


def ids_equal(left: str | None, right: str | None) -> bool:
    """True when both identifiers are present and canonically equal."""
    left_canon = canon_id(left)
    return bool(left_canon) and left_canon == canon_id(right)


def _normalize_for_invoice(value: str) -> str:
    lowered = strip_diacritics(value.strip().lower())
    return _NON_ALNUM_INVOICE.sub(" ", lowered).strip()


def _invoice_token(token: str) -> str | None:
    if not token:
        return None
    cleaned = token.strip("-/_")
    return cleaned.upper() or None


def _is_strong_invoice_token(token: str) -> bool:
    if not _STRONG_INVOICE_TOKEN.match(token):
        return False
    return any(ch.isdigit() for ch in token) and not token.isalpha()


def _is_weak_invoice_token(token: str) -> bool:
    if len(token) < 5 or len(token) > 20:
        return False
    digits = sum(1 for ch in token if ch.isdigit())
    return digits >= 2 and bool(_WEAK_INVOICE_TOKEN.match(token))


def extract_invoice_no(text: str | None) -> str | None:
    """
    Extract an invoice number from remittance text.

    Only fires when a trigger word ("rechnung", "invoice", "ref", ...) is
    present. The token after the trigger (skipping "nr" or "no") must
    contain a digit; otherwise the first token with at least two digits
    is accepted. Prefers None over a false positive.

    Examples:
        extract_invoice_no("Rechnung Nr. RE-2024-0815") -> "RE-2024-0815"
        extract_invoice_no("Miete Januar") -> None
    """
    if not text:
        return None
    normalized = _normalize_for_invoice(text)
    if not normalized:
        return None

    tokens = tokenize(normalized)
    if not any(token in INVOICE_TRIGGERS for token in tokens):
        return None

    for i, token in enumerate(tokens):
        if token not in INVOICE_TRIGGERS:
            continue
        following = tokens[i + 1] if i + 1 < len(tokens) else ""
        if following in INVOICE_NUMBER_MARKERS:
            following = tokens[i + 2] if i + 2 < len(tokens) else ""
        candidate = _invoice_token(following)
        if candidate and _is_strong_invoice_token(candidate):
            return candidate

    for token in tokens:
        candidate = _invoice_token(token)
        if candidate and _is_weak_invoice_token(candidate):
            return candidate

    return None


def match_invoice_no_in_text(invoice_no: str | None, text: str | None) -> bool:
    """
    Check whether an invoice number occurs in free text.

    Purely numeric numbers must not be embedded in a longer digit run.
    Other numbers are compared on their alphanumeric characters only
    (needs at least four), so "RE-2024/15" matches "re2024 15".
    """
    if not invoice_no or not text:
        return False
    needle = _invoice_token(str(invoice_no).strip())
    if not needle:
        return False

    raw = strip_diacritics(str(text)).upper()
    if not raw.strip():
        return False

    if needle.isdigit():
        return re.search(rf"(^|\D){needle}(\D|$)", raw) is not None

    compact_needle = _NON_ALNUM_UPPER.sub("", needle)
    if len(compact_needle) < 4:
        return False
    return compact_needle in _NON_ALNUM_UPPER.sub("", raw)


def _canonical_vendor_tokens(value: str) -> list[str]:
    return [VENDOR_TOKEN_ALIASES.get(token, token) for token in tokenize(value)]


def _has_distinct_shared_token(left: list[str], right: list[str]) -> bool:
    right_set = set(right)
    for token in left:
        if token not in right_set:
            continue
        if token.isdigit() or len(token) < 3 or token in GENERIC_SHARED_TOKENS:
            continue
        return True
    return False


def vendor_compatible(left_raw: str | None, right_raw: str | None) -> bool:
    """
    Compare two party names by normalized token overlap.

    Two shared tokens are enough. One shared token is enough when either
    name is short (at most two tokens) and the shared token is distinctive,
    or when one name contains the other.
    """
    left = normalize_text(left_raw)
    right = normalize_text(right_raw)
    if not left or not right:
        return False
    if left == right:
        return True

    left_tokens = _canonical_vendor_tokens(left)
    right_tokens = _canonical_vendor_tokens(right)
    left_set = set(left_tokens)
    overlap = sum(1 for token in right_tokens if token in left_set)
    if overlap >= 2:
        return True

    if overlap >= 1 and (len(left_tokens) <= 2 or len(right_tokens) <= 2):
        if _has_distinct_shared_token(left_tokens, right_tokens):
            return True
        return left in right or right in left

    return False


def contains_phrase(haystack: str | None, phrases: "tuple[str, ...] | list[str]") -> bool:
    """
    Whole-word phrase search on normalized text.

    "rate" matches "2 rate januar" but not "separate".
    """
    normalized = normalize_text(haystack)
    if not normalized:
        return False
    padded = f" {normalized} "
    for phrase in phrases:
        needle = normalize_text(phrase)
        if needle and f" {needle} " in padded:
            return True
    return False


def contains_word_prefix(haystack: str | None, keywords: "tuple[str, ...] | list[str]") -> bool:
    """
    Word-start keyword search on normalized text.

    German compounds put the keyword first ("Kontofuhrungsgebuhr",
    "Abonnement"), so a keyword matches any word that starts with it.
    """
    normalized = normalize_text(haystack)
    if not normalized:
        return False
    padded = f" {normalized}"
    for keyword in keywords:
        needle = normalize_text(keyword)
        if needle and f" {needle}" in padded:
            return True
    return False
