"""Commit message generation pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from .cancellation import CancellationToken
from .config import Config, get_active_config
from .diffs import fit_diff
from .exceptions import CancelledError, ValidationError
from .normalize import (
    enforce_subject_length,
    is_conventional,
    sanitize_response,
    wrap_body,
)
from .providers.base import CommitClient, DeltaCallback, require_api_key
from .registry import ProviderRegistry, default_registry
from .streaming import StreamOrchestrator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommitOutcome:
    """Final message plus how it was produced."""

    message: str
    was_truncated: bool
    fell_back: bool
    provider: str
    model: str


class CommitGenerator:
    """Turns a diff into a conventional commit message using one provider."""

    def __init__(
        self,
        config: Optional[Config] = None,
        registry: Optional[ProviderRegistry] = None,
    ) -> None:
        self.config = config or get_active_config()
        self.registry = registry if registry is not None else default_registry

    def build_client(self) -> CommitClient:
        """Resolve the configured provider and construct its client.

        Raises ProviderNotFoundError for unknown providers and
        MissingCredentialError when a required key is absent; in both cases
        no client is constructed.
        """
        factory = self.registry.get(self.config.provider)
        settings = self.config.to_client_settings()
        require_api_key(settings, self.registry.requires_api_key(self.config.provider))
        return factory(settings)

    def build_prompt(
        self,
        diff: str,
        context: str = "",
        branch: Optional[str] = None,
        files: Optional[Sequence[str]] = None,
        style: str = "conventional",
        commit_type: Optional[str] = None,
    ) -> str:
        """Construct the textual prompt fed into the provider."""
        prompt_parts = [
            "Generate a conventional commit message for these changes:",
        ]
        if branch:
            prompt_parts.extend(["", f"BRANCH: {branch}"])
        if files:
            prompt_parts.extend(["", "FILES:", *(f"- {f}" for f in files)])
        prompt_parts.extend(["", "DIFF:", diff])
        if context:
            prompt_parts.extend(["", "CONTEXT:", context])
        if style == "conventional":
            prompt_parts.extend(
                [
                    "",
                    "STRICT REQUIREMENTS:",
                    "- MUST use format: type(scope): description",
                    "- If diff shows substantial changes (>5 lines), add body",
                    "- Body should explain what changed and why",
                    f"- Keep subject line under {self.config.max_commit_length} characters",
                    "- Only output the commit message (no backticks / quotes)",
                ]
            )
            if commit_type:
                prompt_parts.append(f"- Use commit type: {commit_type}")
        elif style == "simple":
            prompt_parts.extend(["", "Keep it simple: one short subject line."])
        prompt_parts.append("")
        prompt_parts.append("Analyze the changes carefully and be specific.")
        return "\n".join(prompt_parts)

    def generate(
        self,
        diff: str,
        *,
        commit_type: Optional[str] = None,
        context: str = "",
        branch: Optional[str] = None,
        files: Optional[Sequence[str]] = None,
        on_delta: Optional[DeltaCallback] = None,
        token: Optional[CancellationToken] = None,
    ) -> CommitOutcome:
        """Generate a commit message for ``diff``.

        Raises ValidationError when nothing is left after filtering, before any
        client is built. Deltas passed to ``on_delta`` are the raw provider
        text; the returned message is normalized.
        """
        decision = fit_diff(
            diff, self.config.excluded_paths, self.config.max_diff_length
        )
        if decision.is_empty:
            raise ValidationError("No changes left to describe after filtering the diff")
        if token is not None and token.cancelled:
            raise CancelledError(token.reason or "operation cancelled")

        prompt = self.build_prompt(
            decision.fitted_diff,
            context=context,
            branch=branch,
            files=files,
            commit_type=commit_type,
        )
        client = self.build_client()
        try:
            if self.config.stream:
                result = StreamOrchestrator(client).run(prompt, on_delta, token)
                raw, fell_back = result.text, result.fell_back
            else:
                raw = client.generate_commit_message(prompt, token)
                fell_back = False
        finally:
            close = getattr(client, "close", None)
            if callable(close):
                close()

        message = sanitize_response(raw, commit_type)
        message = enforce_subject_length(message, self.config.max_commit_length)
        message = wrap_body(message)
        logger.debug(
            "commit.generated provider=%s truncated=%s fell_back=%s",
            self.config.provider,
            decision.was_truncated_or_summarized,
            fell_back,
        )
        return CommitOutcome(
            message=message,
            was_truncated=decision.was_truncated_or_summarized,
            fell_back=fell_back,
            provider=self.config.provider,
            model=self.config.model,
        )

    def validate_conventional_commit(self, message: str) -> bool:
        """Validate if a commit message follows conventional commit format."""
        return is_conventional(message)


__all__ = ["CommitGenerator", "CommitOutcome"]
