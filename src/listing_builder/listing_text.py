"""
Listing text derived from the manifest title and description: shortened
titles, search tags and eBay item specifics.
"""

import math
import re

TITLE_MAX_LENGTH = 70
MAX_TAGS = 15

FILLER_WORDS = frozenset({
    'with', 'for', 'the', 'and', '&', '-', 'a', 'an',
    'featuring', 'includes', 'that',
})
FILLER_PHRASES = re.compile(r'\b(?:comes\s+with|perfect\s+for)\b', re.IGNORECASE)

_WORD_SPLIT = re.compile(r'[\s,]+')
_NON_WORD = re.compile(r'[^\w\s]', re.ASCII)
_TAG_STRIP = re.compile(r'[^\w\s,]', re.ASCII)

SIZE_PATTERNS = (
    re.compile(r'\b(size[:\s]*)?(\d+(\.\d+)?)\s*(uk|eu|us|cm|mm|ml|l|kg|g|oz|inches?|in)?\b', re.IGNORECASE),
    re.compile(r'\b(small|medium|large|x-?large|xx-?large|xs|s|m|l|xl|xxl|xxxl)\b', re.IGNORECASE),
)
COLOR_PATTERN = re.compile(
    r'\b(colou?r[:\s]*)?(black|white|red|blue|green|yellow|pink|purple|orange|grey|gray|brown'
    r'|beige|navy|gold|silver|multi-?colou?r)\b', re.IGNORECASE)
MATERIAL_PATTERN = re.compile(
    r'\b(material[:\s]*)?(cotton|polyester|leather|wool|silk|denim|suede|nylon|plastic|metal'
    r'|wood|glass|ceramic|rubber)\b', re.IGNORECASE)
GENDER_PATTERN = re.compile(r"\b(men'?s?|women'?s?|unisex|boys?|girls?|kids?|children'?s?)\b", re.IGNORECASE)
AGE_PATTERN = re.compile(r'\b(adult|child|baby|toddler|infant|teen)\b', re.IGNORECASE)


def shorten_title(title, max_length: int = TITLE_MAX_LENGTH) -> str:
    if not title:
        return ''
    text = FILLER_PHRASES.sub(' ', str(title))
    kept = []
    length = 0
    for word in _WORD_SPLIT.split(text):
        if not word:
            continue
        clean = _NON_WORD.sub('', word).lower()
        if word.lower() in FILLER_WORDS or (clean and clean in FILLER_WORDS):
            continue
        if length + len(word) + 1 > max_length:
            break
        kept.append(word)
        length += len(word) + 1
    return ' '.join(kept)[:max_length].strip()


def rounded_rrp(rrp: float) -> int:
    return int(math.ceil(rrp))


def full_title(short_title: str, rrp: float) -> str:
    return f"{short_title} RRP £{rounded_rrp(rrp)}"


def generate_tags(title) -> str:
    if not title:
        return ''
    words = _TAG_STRIP.sub('', str(title).lower())
    words = [w for w in _WORD_SPLIT.split(words) if len(w) > 2]
    return ', '.join(words[:MAX_TAGS])


def meta_description(tags: str, description: str) -> str:
    return f"{tags}. {str(description or '')[:150]}..."


def extract_item_specifics(title, description) -> dict[str, str]:
    """Size, Color, Material, Gender and AgeGroup, each only when found."""
    text = f"{title or ''} {description or ''}".lower()
    specifics = {}

    for pattern in SIZE_PATTERNS:
        m = pattern.search(text)
        if m:
            specifics['Size'] = m.group(0).strip()
            break

    m = COLOR_PATTERN.search(text)
    if m:
        specifics['Color'] = m.group(2) or m.group(0)

    m = MATERIAL_PATTERN.search(text)
    if m:
        specifics['Material'] = m.group(2) or m.group(0)

    m = GENDER_PATTERN.search(text)
    if m:
        specifics['Gender'] = m.group(0)

    m = AGE_PATTERN.search(text)
    if m:
        specifics['AgeGroup'] = m.group(0)

    return specifics
