"""
Pattern Builder

Derives a regular expression from a corrected value and the text it came
from. The expression anchors on the alphabetic tokens that precede the value
(same line, or the previous line when the value sits alone) and captures the
value's shape inferred from its own format.
"""

import re
from dataclasses import dataclass
from typing import List, Optional

TOKEN_RE = re.compile(r'[A-Za-z]+')
TOKEN_GAP = r'[^A-Za-z\n]*'
VALUE_GAP = r'[^A-Za-z\n]*?'


@dataclass
class PatternCandidate:
    pattern: str
    anchored: bool
    anchor_tokens: List[str]
    shape: str
    description: str


def infer_value_shape(value: str) -> str:
    """Regex fragment (without group) describing the format of ``value``"""
    v = value.strip()

    if re.fullmatch(r'\d{4}-\d{2}-\d{2}', v):
        return r'\d{4}-\d{2}-\d{2}'
    if re.fullmatch(r'\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}', v):
        return r'\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}'
    if re.fullmatch(r'\d{1,2}\s+[A-Za-z]{3,9}\.?\s+\d{4}', v):
        return r'\d{1,2}\s+[A-Za-z]{3,9}\.?\s+\d{4}'
    if re.fullmatch(r'[A-Za-z]{3,9}\.?\s+\d{1,2},?\s*\d{4}', v):
        return r'[A-Za-z]{3,9}\.?\s+\d{1,2},?\s*\d{4}'

    decimal = re.fullmatch(r'-?\d{1,3}(?:,\d{3})+\.(\d{1,4})|-?\d+\.(\d{1,4})', v)
    if decimal:
        places = len(decimal.group(1) or decimal.group(2))
        return r'(?<![\d.])-?\d[\d,]*\.\d{%d}(?!\d)' % places
    if re.fullmatch(r'\d{1,3}(?:,\d{3})+', v):
        return r'(?<![\d,])\d{1,3}(?:,\d{3})+(?![\d,])'
    if re.fullmatch(r'\d+', v):
        return r'(?<!\d)\d{%d}(?!\d)' % len(v)

    if re.fullmatch(r'[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}', v):
        return r'[\w.%+\-]+@[\w\-]+(?:\.[\w\-]+)+'

    digits = re.sub(r'\D', '', v)
    if re.fullmatch(r'\+?[\d\s\-().]+', v) and 10 <= len(digits) <= 15:
        return r'\+?\(?\d[\d\s\-().]{8,20}\d'

    if ' ' not in v and re.search(r'\d', v) and re.fullmatch(r'[A-Za-z0-9\-/_.#]+', v):
        return _character_class_runs(v)

    return ''


def _character_class_runs(value: str) -> str:
    """Map runs of letters/digits to classes and escape the separators"""
    parts = []
    for run in re.finditer(r'[A-Za-z]+|\d+|[^A-Za-z\d]', value):
        text = run.group(0)
        if text.isalpha():
            parts.append(r'[A-Za-z]{%d}' % len(text))
        elif text.isdigit():
            parts.append(r'\d{%d}' % len(text))
        else:
            parts.append(re.escape(text))
    return r'(?<![\w\-])' + ''.join(parts) + r'(?![\w\-])'


def _free_text_capture(text: str, end: int, value: str) -> str:
    """Capture to end of line, or up to the token that follows the value"""
    # a word-initial value must not absorb the separator before it
    head = r'[^\W_]' if value[:1].isalnum() else r'[^\n]'
    line_end = text.find('\n', end)
    rest = text[end:line_end if line_end != -1 else len(text)]
    following = re.match(r'(\s*)(\S+)', rest)
    if not following:
        return r'(%s[^\n]*)' % head
    return r'(%s[^\n]*?)(?=%s%s)' % (head, r'\s*' if following.group(1) else '', re.escape(following.group(2)[:12]))


def locate_value(text: str, value: str) -> int:
    """Index of the first literal (then case-insensitive) occurrence, or -1"""
    index = text.find(value)
    if index == -1:
        index = text.lower().find(value.lower())
    return index


def build_pattern(
    text: str,
    value: str,
    context_window: int = 40,
    max_anchor_tokens: int = 3,
) -> Optional[PatternCandidate]:
    """
    Derive a candidate pattern capturing ``value`` from ``text``.

    Returns:
        PatternCandidate, or None when the value does not occur in the text
    """
    value = value.strip()
    if not text or not value:
        return None

    index = locate_value(text, value)
    if index == -1:
        return None
    end = index + len(value)

    shape = infer_value_shape(value)
    capture = '(%s)' % shape if shape else _free_text_capture(text, end, value)

    line_start = text.rfind('\n', 0, index) + 1
    window_start = max(line_start, index - context_window)
    while window_start > line_start and text[window_start - 1].isalpha():
        window_start -= 1
    tokens = TOKEN_RE.findall(text[window_start:index])[-max_anchor_tokens:]

    if tokens:
        anchor = r'\b' + TOKEN_GAP.join(re.escape(t) for t in tokens)
        return PatternCandidate(
            pattern=anchor + VALUE_GAP + capture,
            anchored=True,
            anchor_tokens=tokens,
            shape=shape or 'free_text',
            description=f"Anchored on '{' '.join(tokens)}'",
        )

    if line_start > 0:
        prev_start = text.rfind('\n', 0, line_start - 1) + 1
        prev_window = max(prev_start, line_start - 1 - context_window)
        while prev_window > prev_start and text[prev_window - 1].isalpha():
            prev_window -= 1
        prev_tokens = TOKEN_RE.findall(text[prev_window:line_start - 1])[-max_anchor_tokens:]
        if prev_tokens:
            anchor = r'\b' + TOKEN_GAP.join(re.escape(t) for t in prev_tokens)
            return PatternCandidate(
                pattern=anchor + TOKEN_GAP + r'\n' + VALUE_GAP + capture,
                anchored=True,
                anchor_tokens=prev_tokens,
                shape=shape or 'free_text',
                description=f"Anchored on previous line '{' '.join(prev_tokens)}'",
            )

    if not shape:
        return None
    return PatternCandidate(
        pattern=capture,
        anchored=False,
        anchor_tokens=[],
        shape=shape,
        description="Shape-only pattern",
    )
