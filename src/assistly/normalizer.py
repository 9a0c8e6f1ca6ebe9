"""
Query normalization, key term extraction and synonym expansion.

Normalization is used for keyword-based scoring and for validating generated
answers; embeddings are computed from the raw query unless the retriever is
configured otherwise.
"""

import re
from typing import Dict, FrozenSet, List


# Function words ignored when extracting key terms
STOP_WORDS: FrozenSet[str] = frozenset({
    "what", "where", "when", "who", "why", "how",
    "is", "are", "was", "were", "be", "been", "being",
    "the", "a", "an", "and", "or", "but", "if", "then",
    "do", "does", "did", "can", "could", "should", "would",
    "have", "has", "had", "will", "shall", "may", "might",
    "to", "from", "in", "on", "at", "by", "for", "with", "about",
    "into", "onto", "of", "off", "out", "up", "down",
})

MIN_KEY_TERM_LENGTH = 3

# Domain synonym table. Order matters: the first synonym found in a query
# decides the expansion for its entry.
SYNONYM_MAP: Dict[str, List[str]] = {
    # Working time
    "hours": ["working hours", "work hours", "office hours", "business hours"],
    "leave": ["vacation", "time off", "holiday", "days off"],
    "sick": ["illness", "ill", "unwell", "medical"],
    "remote": ["work from home", "wfh", "telecommute", "telework"],

    # Security
    "mfa": ["multi-factor authentication", "two-factor", "2fa"],
    "password": ["passcode", "credentials", "login"],

    # Finance
    "expense": ["reimbursement", "cost", "payment"],

    # Support
    "customer": ["client", "user", "patron"],
    "complaint": ["issue", "problem", "concern", "grievance"],
    "escalate": ["forward", "transfer", "refer", "send"],
}

_WHITESPACE = re.compile(r'\s+')
_DISALLOWED_CHARS = re.compile(r'[^\w\s?]')


def normalize_query(query: str) -> str:
    """
    Normalize a query for keyword matching.

    Trims, lowercases, collapses whitespace and replaces every character
    other than word characters, whitespace and ``?`` with a space.

    Args:
        query: Raw query text

    Returns:
        str: Normalized query, or "" for non-string input
    """
    if not isinstance(query, str):
        return ""

    normalized = _WHITESPACE.sub(" ", query.strip().lower())
    normalized = _DISALLOWED_CHARS.sub(" ", normalized)
    return normalized.strip()


def extract_key_terms(query: str) -> List[str]:
    """
    Extract meaningful terms from a query.

    Args:
        query: Raw query text

    Returns:
        List[str]: Tokens of the normalized query longer than two characters
        that are not stop words, in query order
    """
    return [
        token for token in normalize_query(query).split()
        if len(token) >= MIN_KEY_TERM_LENGTH and token not in STOP_WORDS
    ]


def expand_with_synonyms(query: str) -> str:
    """
    Append domain synonyms to a query.

    For each table entry, the first synonym contained in the query appends the
    entry's key; otherwise, if the key is contained, its first synonym is
    appended. Expansion only ever adds text.
    """
    if not isinstance(query, str):
        return ""

    expanded = query.lower()

    for key, synonyms in SYNONYM_MAP.items():
        for synonym in synonyms:
            if synonym in expanded:
                expanded += " " + key
                break
            if key in expanded:
                expanded += " " + synonym
                break

    return expanded
