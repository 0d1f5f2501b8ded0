"""
Name similarity for taxonomy deduplication.

Names are compared after normalization (lowercase, accents stripped, only
[a-z0-9] kept), so "Émissions" and "emissions" are the same name. A trailing
"s" on either side counts as the same name too, which covers the common
singular/plural case ("Risque" / "Risques"). Everything else is scored with
a normalized Levenshtein distance.
"""

import re
import unicodedata

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize(value):
    decomposed = unicodedata.normalize("NFD", value.lower())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _NON_ALNUM.sub("", stripped)


def _equivalent_normalized(a, b):
    return a == b or a + "s" == b or a == b + "s"


def is_equivalent(a, b):
    """True when two names are identical once normalized, up to a plural 's'."""
    return _equivalent_normalized(normalize(a), normalize(b))


def levenshtein(a, b):
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(
                current[j - 1] + 1,
                previous[j] + 1,
                previous[j - 1] + cost,
            ))
        previous = current
    return previous[-1]


def similarity(a, b):
    """Return a score in [0, 1]; 1.0 means the names are the same entry."""
    norm_a = normalize(a)
    norm_b = normalize(b)

    if _equivalent_normalized(norm_a, norm_b):
        return 1.0

    max_length = max(len(norm_a), len(norm_b))
    if max_length == 0:
        return 1.0
    return 1 - levenshtein(norm_a, norm_b) / max_length
