"""Helpers shared by the thread services."""

import math
import re

THINK_TAG_PATTERN = re.compile(r"<think>.*?</think>", re.DOTALL)


def approximate_tokens(text: str) -> int:
    """Estimate the token size of a text as one token per four characters."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def strip_think_tags(text: str) -> str:
    """Remove ``<think>...</think>`` sections from a model answer."""
    return THINK_TAG_PATTERN.sub("", text).strip()
