"""Employer name normalization used for alias keys and conflict checks."""

from __future__ import annotations

import re
import unicodedata

# Legal-form tokens dropped from the normalized key
_COMPANY_SUFFIXES = frozenset(
    {
        "pty",
        "ltd",
        "limited",
        "proprietary",
        "pl",
        "inc",
        "incorporated",
        "co",
        "corp",
        "corporation",
        "company",
    }
)


def normalize_employer_name(name: str) -> str:
    """Fold an employer name to its comparison key.

    Normalization rules:
    - Unicode NFKD, then drop combining marks (diacritics)
    - Lowercase
    - "&" becomes "and"
    - "P/L" becomes "pl"
    - Every other non-alphanumeric run becomes a single space
    - Leading "the" and trailing legal-form tokens removed

    Examples:
        "ABC Pty Ltd" -> "abc"
        "A.B.C. Pty. Ltd." -> "a b c"
        "Café & Sons P/L" -> "cafe and sons"
        "The Builders Co" -> "builders"
    """
    if not name:
        return ""

    text = unicodedata.normalize("NFKD", name)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = text.lower()
    text = text.replace("&", " and ")
    text = re.sub(r"\bp\s*/\s*l\b", "pl", text)
    text = re.sub(r"[^a-z0-9]+", " ", text)

    tokens = text.split()
    if len(tokens) > 1 and tokens[0] == "the":
        tokens = tokens[1:]
    while len(tokens) > 1 and tokens[-1] in _COMPANY_SUFFIXES:
        tokens.pop()

    return " ".join(tokens)
