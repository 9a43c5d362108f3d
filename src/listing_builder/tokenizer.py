"""
Title tokenizer shared by the category index and title matching.
"""

import re

STOPWORDS = frozenset({
    'with', 'for', 'and', 'or', 'the', 'a', 'an', 'in', 'on', 'at',
    'to', 'from', 'by', 'of', 'is', 'was', 'are', 'were', 'been',
})

_RRP_ANNOTATION = re.compile(r'rrp\s*£\d+', re.IGNORECASE)
_NON_WORD = re.compile(r'[^\w\s]', re.ASCII)
_WHITESPACE = re.compile(r'\s+')


def tokenize(text) -> list[str]:
    if not text:
        return []
    cleaned = _RRP_ANNOTATION.sub('', str(text).lower())
    cleaned = _NON_WORD.sub(' ', cleaned)
    cleaned = _WHITESPACE.sub(' ', cleaned).strip()
    if not cleaned:
        return []
    return [w for w in cleaned.split(' ') if len(w) > 2 and w not in STOPWORDS]
