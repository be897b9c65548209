"""Base agent: completion calls and defensive JSON decoding shared by every LLM agent.

All agents talk to a chat-completions style endpoint through an injected client exposing
``chat.completions.create`` (the ``groq`` SDK client in production). Each call asks for a JSON
object response, applies a per-call timeout and retries timeouts a bounded number of times.
"""

import base64
import json
import re
from typing import Any, ClassVar, TypeVar

from groq import APIError, APITimeoutError
from pydantic import BaseModel, ValidationError

from app.core.errors import CompletionError, ExtractionError
from app.core.settings import Settings
from app.core.utils import RetryPolicy, get_logger, retry_with_backoff

FENCED_JSON = re.compile(r"```(?:json)?\s*(\{[\s\S]*\})\s*```")
PREVIEW_LEN = 200

P = TypeVar("P", bound=BaseModel)

logger = get_logger("statement-pipeline.agent")


def decode_json_content(content: str | None, label: str = "completion") -> dict[str, Any]:
    """Parse completion text as a JSON object; fall back to a fenced code block before giving up."""
    if not content or not content.strip():
        msg = f"{label}: AI returned empty response"
        raise ExtractionError(msg)
    try:
        data = json.loads(content)
    except json.JSONDecodeError as parse_error:
        match = FENCED_JSON.search(content)
        if not match:
            msg = f"{label}: invalid JSON response: {parse_error}"
            raise ExtractionError(msg) from parse_error
        logger.info(f"[{label}] Found JSON in code block, extracting...")
        try:
            data = json.loads(match.group(1))
        except json.JSONDecodeError as inner_error:
            msg = f"{label}: failed to parse JSON from code block: {inner_error}"
            raise ExtractionError(msg) from inner_error
    if not isinstance(data, dict):
        msg = f"{label}: expected a JSON object, got {type(data).__name__}"
        raise ExtractionError(msg)
    return data


def pdf_file_part(pdf_bytes: bytes, file_name: str) -> dict[str, Any]:
    """Build a ``file`` content part carrying a PDF as a base64 data URI."""
    encoded = base64.b64encode(pdf_bytes).decode("ascii")
    return {
        "type": "file",
        "file": {"filename": file_name, "file_data": f"data:application/pdf;base64,{encoded}"},
    }


class BaseAgent:
    """Common plumbing for completion-backed agents."""

    name: ClassVar[str] = "base"

    def __init__(self, llm_client: object, settings: Settings) -> None:
        """Initialize the agent with an LLM client and settings."""
        self.llm_client = llm_client
        self.settings = settings

    def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str | None = None,
        max_tokens: int,
        timeout: float,
        label: str,
    ) -> str:
        """Send one completion request and return the message content.

        Timeouts are retried ``settings.timeout_retries`` extra times; any other API error, or a
        timeout that outlives the retries, is raised as ``CompletionError`` for this call only.
        """
        model = model or self.settings.llm_model
        policy = RetryPolicy(
            max_attempts=self.settings.timeout_retries + 1,
            base_delay=self.settings.timeout_retry_delay,
        )

        def call(attempt: int) -> Any:
            logger.info(f"[{label}] Calling {model} (attempt {attempt}, timeout {timeout:.0f}s)")
            return self.llm_client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=self.settings.llm_temperature,
                max_tokens=max_tokens,
                response_format={"type": "json_object"},
                timeout=timeout,
            )

        try:
            completion = retry_with_backoff(
                call,
                policy,
                should_retry=lambda exc: isinstance(exc, APITimeoutError),
                label=label,
            )
        except APITimeoutError as exc:
            msg = f"{label}: completion timed out after {policy.max_attempts} attempts"
            logger.error(msg)
            raise CompletionError(msg) from exc
        except APIError as exc:
            msg = f"{label}: completion API call failed: {exc}"
            logger.exception(msg)
            raise CompletionError(msg) from exc

        try:
            content = completion.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as exc:
            msg = f"{label}: invalid API response structure"
            raise CompletionError(msg) from exc
        preview = (content or "")[:PREVIEW_LEN]
        logger.info(f"[{label}] Response: {len(content or '')} characters: {preview}")
        return content

    def complete_json(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str | None = None,
        max_tokens: int,
        timeout: float,
        label: str,
    ) -> dict[str, Any]:
        """Send one completion request and decode its content as a JSON object."""
        content = self.complete(messages, model=model, max_tokens=max_tokens, timeout=timeout, label=label)
        return decode_json_content(content, label)

    def parse(self, model: type[P], data: dict[str, Any], label: str) -> P:
        """Validate a decoded response against ``model``; a mismatch is an ``ExtractionError``."""
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            msg = f"{label}: response does not match {model.__name__}: {exc.error_count()} invalid field(s)"
            logger.warning(msg)
            raise ExtractionError(msg) from exc
