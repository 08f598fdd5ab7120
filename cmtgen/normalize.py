"""Output sanitization / normalization for provider responses.

``sanitize_response`` removes the artifacts models like to add around a
commit message (quotes, code fences, lead-in sentences, duplicated type
prefixes, trailing explanations) without ever adding anything. It is
idempotent: sanitizing an already sanitized message returns it unchanged.
"""

from __future__ import annotations

import re
import textwrap
from typing import List, Optional

from .exceptions import MalformedResponseError

COMMIT_TYPES = (
    "feat",
    "fix",
    "docs",
    "style",
    "refactor",
    "perf",
    "test",
    "build",
    "ci",
    "chore",
    "revert",
)

CONVENTIONAL_RE = re.compile(
    r"^(" + "|".join(COMMIT_TYPES) + r")(\([a-zA-Z0-9_./-]+\))?!?: .+"
)

_PREFIX_RE = re.compile(r"^(?P<type>[A-Za-z][\w-]*)(?P<scope>\([^()\n]*\))?(?P<bang>!)?:\s+")
_FENCED_RE = re.compile(r"^```[\w+.-]*[ \t]*\n(?P<body>.*?)\n?```$", re.S)
_LEAD_IN_RE = re.compile(r"^(?:sure\b|here(?:'s| is)\b)[^:\n]*:\s*", re.I)
_PROSE_RE = re.compile(
    r"^(?:(?:explanation|note|notes|reasoning|rationale)\s*:"
    r"|this commit message\b"
    r"|here(?:'s| is)\b"
    r"|i (?:chose|used|have)\b)",
    re.I,
)
_SEPARATOR_RE = re.compile(r"^(?:```.*|-{3,}|={3,})$")
_LIST_MARKERS = "-*• "
_QUOTES = ('"', "'", "`")


def _strip_wrappers(text: str) -> str:
    """Remove enclosing whitespace, quotes, fences and lead-in lines."""
    while True:
        before = text
        text = text.strip()
        first, _, rest = text.partition("\n")
        if rest and _LEAD_IN_RE.match(first) and not _LEAD_IN_RE.sub("", first):
            text = rest.strip()
        fenced = _FENCED_RE.match(text)
        if fenced:
            text = fenced.group("body")
        elif text.startswith("```"):
            _, newline, tail = text.partition("\n")
            # Unterminated fence: drop the opening marker line.
            text = tail if newline and tail.strip() else text.strip("`")
        elif len(text) >= 2 and text[0] in _QUOTES and text[-1] == text[0]:
            text = text[1:-1]
        if text == before:
            return text


def _collapse_duplicate_prefix(subject: str) -> str:
    while True:
        outer = _PREFIX_RE.match(subject)
        if not outer:
            return subject
        rest = subject[outer.end():]
        inner = _PREFIX_RE.match(rest)
        if not inner or inner.group("type").lower() != outer.group("type").lower():
            return subject
        if inner.group("scope") and not outer.group("scope"):
            subject = rest
        else:
            subject = subject[: outer.end()] + rest[inner.end():]


def _clean_subject(line: str) -> str:
    while True:
        before = line
        line = line.lstrip(_LIST_MARKERS).strip("`").strip()
        if len(line) >= 2 and line[0] in _QUOTES and line[-1] == line[0]:
            line = line[1:-1].strip()
        line = _LEAD_IN_RE.sub("", line, count=1)
        line = re.sub(r"\s+", " ", line)
        line = _collapse_duplicate_prefix(line)
        if line == before:
            return line


def _is_type_label(line: str, commit_type: Optional[str]) -> bool:
    if not commit_type:
        return False
    label = re.sub(r"^type\s*:\s*", "", line.strip(), flags=re.I).rstrip(":").strip()
    return label.lower() == commit_type.strip().lower()


def sanitize_response(text: str, commit_type: Optional[str] = None) -> str:
    """Strip provider artifacts from ``text`` and return the commit message.

    Rules, in order:
      1. Trim whitespace, enclosing quotes, code fences and lead-in lines.
      2. Clean the subject (first non-empty line): list markers, backticks,
         duplicated type prefixes, internal whitespace. A bare line holding
         only ``commit_type`` before the real message is dropped. No type is
         ever injected.
      3. Cut trailing explanatory prose after a clear boundary.
      4. Collapse runs of blank lines; one blank line separates subject/body.

    The rules are reapplied until the text stops changing.

    Raises ``MalformedResponseError`` when nothing usable remains.
    """
    result = _sanitize_once(text, commit_type)
    # Cutting prose can expose wrappers (quotes, fences) of the remaining text.
    while True:
        again = _sanitize_once(result, commit_type)
        if again == result:
            return result
        result = again


def _sanitize_once(text: str, commit_type: Optional[str]) -> str:
    if text is None or not str(text).strip():
        raise MalformedResponseError("Empty provider response")
    lines = _strip_wrappers(str(text)).splitlines()

    subject = ""
    index = 0
    while index < len(lines):
        candidate = _clean_subject(lines[index])
        index += 1
        if not candidate:
            continue
        has_more = any(line.strip() for line in lines[index:])
        if has_more and _is_type_label(candidate, commit_type):
            continue
        subject = candidate
        break
    if not subject:
        raise MalformedResponseError("Provider response holds no commit message")

    body: List[str] = []
    for raw in lines[index:]:
        line = raw.rstrip()
        stripped = line.strip()
        if _SEPARATOR_RE.match(stripped) or _PROSE_RE.match(stripped):
            break
        if not stripped:
            if body and body[-1] == "":
                continue
            body.append("")
            continue
        body.append(line)
    while body and body[0] == "":
        body.pop(0)
    while body and body[-1] == "":
        body.pop()

    if not body:
        return subject
    return subject + "\n\n" + "\n".join(body)


def is_conventional(message: str) -> bool:
    lines = (message or "").strip().splitlines()
    return bool(lines) and bool(CONVENTIONAL_RE.match(lines[0].strip()))


def enforce_subject_length(message: str, max_len: int) -> str:
    """Shorten only the subject line, preferring a word boundary.

    The body is never truncated; a shortened subject ends with an ellipsis.
    """
    lines = message.splitlines()
    if not lines or max_len <= 0:
        return message
    subject = lines[0].strip()
    if len(subject) <= max_len:
        return message
    cutoff = subject.rfind(" ", 0, max_len)
    if cutoff == -1 or cutoff < max_len * 0.6:
        cutoff = max_len - 1
    lines[0] = subject[:cutoff].rstrip() + "…"
    return "\n".join(lines)


def wrap_body(message: str, width: int = 72) -> str:
    """Wrap body paragraphs (after the first blank line) to ``width``.

    Fenced blocks are left as they are and paragraphs are never merged.
    """
    lines = message.splitlines()
    if not lines:
        return message
    body_start = None
    for i in range(1, len(lines)):
        if lines[i].strip() == "":
            body_start = i + 1
            break
    if body_start is None or body_start >= len(lines):
        return message
    wrapped_body: List[str] = []
    for paragraph in "\n".join(lines[body_start:]).split("\n\n"):
        if not paragraph.strip():
            continue
        if paragraph.strip().startswith("```"):
            wrapped_body.append(paragraph)
        else:
            wrapped_body.extend(
                line
                for raw in paragraph.splitlines()
                for line in (
                    textwrap.wrap(raw, width=width, drop_whitespace=True) or [""]
                )
            )
        wrapped_body.append("")
    if wrapped_body and wrapped_body[-1] == "":
        wrapped_body.pop()
    return "\n".join(lines[:body_start] + wrapped_body)


__all__ = [
    "COMMIT_TYPES",
    "CONVENTIONAL_RE",
    "enforce_subject_length",
    "is_conventional",
    "sanitize_response",
    "wrap_body",
]
