"""
Player key derivation and name comparison utilities.

Registrations and admin imports describe the same human in slightly
different ways:
- Email: "Joao.Silva@Gmail.com" vs "joaosilva@gmail.com"
- Names: "João Silva" vs "JOAO SILVA" vs "Silva, João"

The deterministic player_id is derived from the email and the birth date
only, so two records for the same human collapse to one key. Names are
never part of the key; they are only compared fuzzily by the matcher.
"""

import re
import unicodedata
from datetime import date
from typing import Optional

import jellyfish
from rapidfuzz import fuzz

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_email(email: Optional[str]) -> str:
    """
    Lowercase an email and strip every non-alphanumeric character.

    Examples:
        >>> normalize_email("Joao.Silva@Gmail.com")
        'joaosilvagmailcom'
        >>> normalize_email("  ANA+pelada@x.io ")
        'anapeladaxio'
    """
    if not email:
        return ""
    return _NON_ALNUM.sub("", email.strip().lower())


def derive_player_id(email: Optional[str], birth_date: Optional[date]) -> Optional[str]:
    """
    Build the deterministic player key.

    player_id = normalize_email(email) + DDMMYYYY(birth_date)

    Returns None when the birth date is unknown (or the email normalizes to
    nothing), in which case exact-key matching is unavailable.

    Examples:
        >>> derive_player_id("Joao.Silva@gmail.com", date(1990, 3, 7))
        'joaosilvagmailcom07031990'
        >>> derive_player_id("joao@gmail.com", None) is None
        True
    """
    if birth_date is None:
        return None
    normalized = normalize_email(email)
    if not normalized:
        return None
    return f"{normalized}{birth_date.strftime('%d%m%Y')}"


def normalize_name(name: Optional[str]) -> str:
    """
    Normalize a person name for comparison.

    Normalization steps:
    1. Convert to lowercase
    2. Remove accents (ã → a, ç → c)
    3. Handle "Sobrenome, Nome" format
    4. Collapse whitespace

    Examples:
        >>> normalize_name("João SILVA")
        'joao silva'
        >>> normalize_name("Silva, João")
        'joao silva'
    """
    if not name:
        return ""

    normalized = name.lower().strip()

    # NFD splits "ã" into "a" + combining tilde, then drop the combining marks
    normalized = unicodedata.normalize("NFD", normalized)
    normalized = "".join(
        char for char in normalized
        if unicodedata.category(char) != "Mn"
    )

    if "," in normalized:
        last, first = normalized.split(",", 1)
        normalized = f"{first.strip()} {last.strip()}"

    return " ".join(normalized.split())


def full_name(first_name: Optional[str], last_name: Optional[str]) -> str:
    """Join first and last name, ignoring missing parts."""
    return " ".join(part.strip() for part in (first_name, last_name) if part and part.strip())


def compare_names(name1: str, name2: str) -> float:
    """
    Compare two person names and return a similarity score.

    Takes the best of Jaro-Winkler (typos), token sort ratio (word order)
    and partial ratio (abbreviated or missing surnames).

    Returns:
        Similarity score from 0.0 (no match) to 1.0 (exact match)

    Examples:
        >>> compare_names("Joao Silva", "João Silva")
        1.0
        >>> compare_names("joao silva", "pedro souza") < 0.7
        True
    """
    n1 = normalize_name(name1)
    n2 = normalize_name(name2)

    if n1 == n2:
        return 1.0 if n1 else 0.0

    if not n1 or not n2:
        return 0.0

    jw_score = jellyfish.jaro_winkler_similarity(n1, n2)
    token_sort = fuzz.token_sort_ratio(n1, n2) / 100.0
    partial = fuzz.partial_ratio(n1, n2) / 100.0

    return max(jw_score, token_sort, partial)
