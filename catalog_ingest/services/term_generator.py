# catalog_ingest/services/term_generator.py

"""Search-term generation for category top-off."""

import random
import re
from itertools import combinations

from catalog_ingest.config.settings import Settings
from catalog_ingest.models.category import CategoryLeaf

_SPLIT_RE = re.compile(r"[^a-z0-9]+")


def tokenize(text: str) -> list[str]:
    """Lower-cased alphanumeric tokens of length >= 3, stop words removed."""
    return [
        t for t in _SPLIT_RE.split((text or "").lower())
        if len(t) >= 3 and t not in Settings.STOP_WORDS
    ]


def pluralize(token: str) -> str:
    return token if token.endswith("s") else f"{token}s"


def singularize(token: str) -> str:
    if token.endswith("s") and len(token) > 3:
        return token[:-1]
    return token


class TermGenerator:
    """Expands a taxonomy leaf into a capped list of search queries.

    The leaf's own label, key and aliases always come first; token
    variants and token combinations follow, optionally shuffled so
    repeated runs explore different queries.
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        self.rng = rng or random.Random()

    def generate(
        self,
        leaf: CategoryLeaf,
        terms_cap: int = Settings.TERMS_CAP,
        tokens_max: int = Settings.TOKENS_MAX,
        combos: int = Settings.TERM_COMBOS,
        shuffle: bool = True,
    ) -> list[str]:
        """Return up to ``terms_cap`` distinct queries for ``leaf``.

        ``shuffle`` only reorders the derived terms.  The label, key and
        aliases are never shuffled and always lead the list, so a small
        ``terms_cap`` still searches the leaf's own names first.
        """
        base: list[str] = []
        for raw in (leaf.label, leaf.key.replace("-", " ").replace("_", " "),
                    *leaf.aliases):
            phrase = " ".join((raw or "").lower().split())
            if phrase:
                base.append(phrase)
        base = list(dict.fromkeys(base))

        tokens = list(dict.fromkeys(t for b in base for t in tokenize(b)))
        tokens = tokens[:max(0, tokens_max)]

        derived: list[str] = []
        for tok in tokens:
            derived.extend((tok, pluralize(tok), singularize(tok)))
        if combos >= 1:
            derived.extend(" ".join(c) for c in combinations(tokens, 2))
        if combos >= 2:
            derived.extend(" ".join(c) for c in combinations(tokens, 3))

        extra = [t for t in dict.fromkeys(derived) if t not in base]
        if shuffle:
            self.rng.shuffle(extra)
        terms = [t for t in (*base, *extra) if len(t) >= 3]
        return terms[:max(0, terms_cap)]

    def with_modifiers(self, term: str, count: int = 3) -> list[str]:
        """``term`` followed by up to ``count`` wholesale-flavoured variants."""
        modifiers = list(Settings.QUERY_MODIFIERS)
        self.rng.shuffle(modifiers)
        return [term, *(f"{term} {m}" for m in modifiers[:max(0, count)])]
