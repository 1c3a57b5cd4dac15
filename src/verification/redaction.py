"""
PII redaction for OCR text.

Every pattern is matched against the original text. Overlapping matches are
merged into one span and replaced once, and each category is reported once
no matter how many spans it matched.
"""

import re
from typing import List, Pattern, Tuple

from .models import RedactionResult

REDACTION_MARKER = '[REDACTED]'

# Order is the order categories are reported in
PII_PATTERNS: List[Tuple[str, Pattern]] = [
    ('email', re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b')),
    ('phone', re.compile(r'(?<!\d)(?:\+\d{1,3}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b')),
    ('credit_card', re.compile(r'\b(?:\d{4}[-\s]?){3}\d{1,7}\b')),
    ('government_id', re.compile(r'\b\d{3}-\d{2}-\d{4}\b')),
    ('street_address', re.compile(
        r'\b\d+[ \t]+(?:[A-Za-z0-9.]+[ \t]+){0,4}'
        r'(?:Street|St|Avenue|Ave|Road|Rd|Boulevard|Blvd|Lane|Ln|Drive|Dr|Court|Ct|Circle|Cir)\b',
        re.IGNORECASE
    )),
    ('postal_code', re.compile(r'\b\d{5}(?:-\d{4})?\b')),
    ('ip_address', re.compile(r'\b(?:\d{1,3}\.){3}\d{1,3}\b')),
    # Capitalised two or three word runs on one line. Catches book titles too.
    ('name', re.compile(r'\b[A-Z][a-z]+[ \t]+[A-Z][a-z]+(?:[ \t]+[A-Z][a-z]+)?\b')),
]


def _merge_spans(spans: List[Tuple[int, int]]) -> List[Tuple[int, int]]:
    merged: List[Tuple[int, int]] = []
    for start, end in sorted(spans):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def redact_pii(text: str) -> RedactionResult:
    """
    Redact personally identifying information from text.

    Args:
        text: Raw text

    Returns:
        RedactionResult with the redacted text, detected categories and the
        number of spans replaced
    """
    if not text:
        return RedactionResult(redacted_text='', pii_detected=[], redaction_count=0)

    spans: List[Tuple[int, int]] = []
    categories: List[str] = []

    for category, pattern in PII_PATTERNS:
        found = False
        for match in pattern.finditer(text):
            if match.end() > match.start():
                spans.append((match.start(), match.end()))
                found = True
        if found:
            categories.append(category)

    merged = _merge_spans(spans)

    parts = []
    cursor = 0
    for start, end in merged:
        parts.append(text[cursor:start])
        parts.append(REDACTION_MARKER)
        cursor = end
    parts.append(text[cursor:])

    return RedactionResult(
        redacted_text=''.join(parts),
        pii_detected=categories,
        redaction_count=len(merged)
    )
