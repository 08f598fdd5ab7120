"""Diff size budgets derived from model context windows.

Uses the snapshot bundled with ``genai-prices`` (no network) to find a
model's context window and turns it into a character budget for the fitted
diff. Snapshot loading is cached and guarded by a lock.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Optional

from genai_prices import data_snapshot

logger = logging.getLogger(__name__)

DEFAULT_MAX_DIFF_LENGTH = 24_000
MAX_DIFF_LENGTH_CAP = 120_000
CHARS_PER_TOKEN = 4
# Share of the context window the diff may occupy.
DIFF_WINDOW_SHARE = 0.5

_DATE_SUFFIX_RE = re.compile(r"[-_](?:\d{8}|\d{6}|\d{4})(?:\d{2}\d{2})?$")
_DATE_YMD_SUFFIX_RE = re.compile(r"-20\d{2}-\d{2}-\d{2}$")


@dataclass
class _SnapshotState:
    cache: Optional[data_snapshot.DataSnapshot] = None
    lock: threading.Lock = field(default_factory=threading.Lock)


_STATE = _SnapshotState()


def _snapshot_provider_id(provider: str) -> Optional[str]:
    p = (provider or "").strip().lower()
    if p in {"openai", "github"}:
        return "openai"
    if p == "anthropic":
        return "anthropic"
    if p in {"xai", "x-ai"}:
        return "x-ai"
    return None


def _ensure_snapshot() -> data_snapshot.DataSnapshot:
    with _STATE.lock:
        if _STATE.cache is None:
            _STATE.cache = data_snapshot.get_snapshot()
        return _STATE.cache


def _model_candidates(model: str) -> list[str]:
    # GitHub Models prefixes ids with the publisher ("openai/gpt-4.1-mini").
    base = model.split("/", 1)[-1].strip().lower()
    candidates = [base]
    for pattern in (_DATE_YMD_SUFFIX_RE, _DATE_SUFFIX_RE):
        stripped = pattern.sub("", base)
        if stripped and stripped not in candidates:
            candidates.append(stripped)
    return candidates


def context_window(provider: str, model: str) -> Optional[int]:
    """Return the model's context window in tokens, if known."""
    provider_id = _snapshot_provider_id(provider)
    if provider_id is None or not model:
        return None
    snapshot = _ensure_snapshot()
    for candidate in _model_candidates(model):
        try:
            _, model_info = snapshot.find_provider_model(
                candidate,
                None,
                provider_id,
                None,
            )
        except LookupError:
            continue
        window = getattr(model_info, "context_window", None)
        if window:
            return int(window)
    logger.debug("budget.unknown model provider=%s model=%s", provider, model)
    return None


def default_max_diff_length(provider: str, model: str) -> int:
    """Character budget for a diff sent to ``provider``/``model``."""
    window = context_window(provider, model)
    if not window:
        return DEFAULT_MAX_DIFF_LENGTH
    budget = int(window * CHARS_PER_TOKEN * DIFF_WINDOW_SHARE)
    return max(1, min(budget, MAX_DIFF_LENGTH_CAP))


__all__ = [
    "DEFAULT_MAX_DIFF_LENGTH",
    "MAX_DIFF_LENGTH_CAP",
    "context_window",
    "default_max_diff_length",
]
