"""Item name normalization used to detect duplicate tracked items."""

import re

_LEADING_DESCRIPTORS = {"fresh", "large", "small", "the"}
_TRAILING_FILLER = {"pack", "packs", "count", "ct", "pkg", "pk", "bag", "bottle", "can", "jar", "box"}
_UNITS = {"oz", "fl", "lb", "lbs", "g", "kg", "ml", "l", "gal", "qt", "dozen"}
_SIZE_TOKEN = re.compile(r"^\d+(?:\.\d+)?(?:oz|fl|lb|lbs|g|kg|ml|l|ct|gal|qt|dozen)?$")


def normalize_item_name(name: str) -> str:
    """Reduce a product name to the key used to match tracked items.

    Case, punctuation, leading size adjectives and trailing package sizes are
    ignored, so "Fresh Whole Milk, 1 gal" and "whole milk" share a key. Brand
    positioning words such as "organic" are kept, since organic and
    conventional products are tracked separately.
    """
    cleaned = re.sub(r"[^a-z0-9% ]+", " ", name.lower())
    tokens = cleaned.split()

    while tokens and tokens[0] in _LEADING_DESCRIPTORS:
        tokens.pop(0)
    while tokens:
        last = tokens[-1]
        if last in _TRAILING_FILLER or _SIZE_TOKEN.match(last):
            tokens.pop()
        elif last in _UNITS and len(tokens) > 1 and (tokens[-2] in _UNITS or _SIZE_TOKEN.match(tokens[-2])):
            tokens.pop()
        else:
            break

    if not tokens:
        return " ".join(name.lower().split())
    return " ".join(tokens)


def display_name(name: str) -> str:
    """Title-case a name after collapsing whitespace."""
    words = name.split()
    if not words:
        return name.strip()
    return " ".join(word if word.isupper() else word.capitalize() for word in words)
