"""
OpenAI-compatible reviewer adapters.

``OpenAIReviewer`` talks to any OpenAI-compatible chat completions endpoint
(``base_url``); ``AzureOpenAIReviewer`` talks to an Azure OpenAI deployment.
Both request ``response_format=json_object`` and retry transient API
errors with tenacity inside the committee's timebox.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional, Union

import httpx
import openai
from openai import AsyncAzureOpenAI, AsyncOpenAI
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from intake.consensus.models import EvidencePack
from intake.consensus.reviewers.base import BaseReviewer, DEFAULT_TIMEOUT_SECONDS
from intake.consensus.reviewers.prompts import COLUMN_REVIEW_SYSTEM_PROMPT, build_column_review_prompt
from intake.logger import get_logger

logger = get_logger(__name__)

RE_JSON_BLOCK = re.compile(r"```(?:json)?\s*(\{.*\}|\[.*\])\s*```", re.DOTALL)

TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.InternalServerError,
)

# OpenAI-compatible local servers ignore the key but the client requires one.
KEYLESS_API_KEY = "EMPTY"


class JSONParser:
    """
    Tolerant JSON extraction from model output.

    Strict JSON is expected (``response_format=json_object``); fenced
    blocks and a balanced-bracket slice are accepted as fallbacks.
    Failures return an ``{"error": "json_parse_error", ...}`` dict.
    """

    @staticmethod
    def parse(text: str) -> Union[dict, list]:
        raw = (text or "").strip()
        if not raw:
            return {"error": "json_parse_error", "raw_output": "", "parse_error": "empty_output"}

        attempts: List[str] = [raw]
        block = RE_JSON_BLOCK.search(raw)
        if block:
            attempts.append(block.group(1))
        sliced = JSONParser.balanced_slice(raw)
        if sliced is not None:
            attempts.append(sliced)

        for candidate in attempts:
            try:
                return json.loads(candidate)
            except json.JSONDecodeError:
                continue
        return {"error": "json_parse_error", "raw_output": raw[:2000], "parse_error": "unable_to_parse_json"}

    @staticmethod
    def balanced_slice(text: str) -> Optional[str]:
        """First bracket-balanced ``{...}`` or ``[...]`` span in *text*."""
        starts = [idx for idx in (text.find("{"), text.find("[")) if idx != -1]
        if not starts:
            return None
        start = min(starts)
        opener = text[start]
        closer = "}" if opener == "{" else "]"
        depth = 0
        for idx in range(start, len(text)):
            if text[idx] == opener:
                depth += 1
            elif text[idx] == closer:
                depth -= 1
                if depth == 0:
                    return text[start: idx + 1]
        return None


def _log_retry(retry_state: Any) -> None:
    args = retry_state.args or []
    reviewer = args[0] if args else None
    logger.warning(
        "Reviewer call retrying | reviewer=%s | model=%s | attempt=%d | error=%s",
        getattr(reviewer, "reviewer_id", None),
        getattr(reviewer, "model", None),
        retry_state.attempt_number,
        str(retry_state.outcome.exception()) if retry_state.outcome else "unknown",
    )


class OpenAIReviewer(BaseReviewer):
    """Reviewer backed by an OpenAI-compatible chat completions API."""

    def __init__(
        self,
        reviewer_id: str,
        model: str,
        endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        family: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: int = 800,
        client: Any = None,
    ):
        super().__init__(reviewer_id, timeout_seconds=timeout_seconds, family=family)
        self.model = model
        self.endpoint = endpoint
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.client = client if client is not None else self._build_client(api_key)

    def _http_timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.timeout_seconds, connect=min(10.0, self.timeout_seconds))

    def _build_client(self, api_key: Optional[str]) -> Any:
        return AsyncOpenAI(
            api_key=api_key or KEYLESS_API_KEY,
            base_url=self.endpoint,
            timeout=self._http_timeout(),
            max_retries=0,
        )

    @staticmethod
    def _build_messages(request: Dict[str, Any], pack: EvidencePack) -> List[Dict[str, Any]]:
        return [
            {"role": "system", "content": COLUMN_REVIEW_SYSTEM_PROMPT},
            {"role": "user", "content": build_column_review_prompt(request, pack.fields)},
        ]

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        before_sleep=_log_retry,
        reraise=True,
    )
    async def _create(self, messages: List[Dict[str, Any]]) -> Any:
        return await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"},
        )

    async def _complete(self, request: Dict[str, Any], pack: EvidencePack) -> Any:
        logger.debug("Reviewer request | reviewer=%s | model=%s | case_id=%s", self.reviewer_id, self.model, pack.case_id)
        response = await self._create(self._build_messages(request, pack))
        content = (response.choices[0].message.content or "").strip()
        return JSONParser.parse(content)


class AzureOpenAIReviewer(OpenAIReviewer):
    """Reviewer backed by an Azure OpenAI deployment (``model`` is the deployment name)."""

    def __init__(self, reviewer_id: str, model: str, endpoint: Optional[str] = None,
                 api_key: Optional[str] = None, api_version: str = "2024-06-01", **kwargs: Any):
        self.api_version = api_version
        super().__init__(reviewer_id, model, endpoint=endpoint, api_key=api_key, **kwargs)

    def _build_client(self, api_key: Optional[str]) -> Any:
        return AsyncAzureOpenAI(
            api_key=api_key,
            azure_endpoint=self.endpoint,
            api_version=self.api_version,
            timeout=self._http_timeout(),
            max_retries=0,
        )
