"""
Reviewer pool configuration.

The pool is a YAML file::

    reviewers:
      - id: gpt4o-mini
        kind: openai
        model: gpt-4o-mini
        endpoint: https://api.openai.com/v1
        api_key_env: OPENAI_API_KEY
        timeout_seconds: 20
        enabled: true
        family: openai

Only ``enabled`` entries are instantiated.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, List, Optional, Type, Union

import yaml
from pydantic import BaseModel, ValidationError

from intake.config import Settings, get_settings
from intake.consensus.reviewers.base import BaseReviewer
from intake.consensus.reviewers.openai_reviewer import AzureOpenAIReviewer, OpenAIReviewer
from intake.errors import ConfigError
from intake.logger import get_logger

logger = get_logger(__name__)

REVIEWER_KINDS: Dict[str, Type[OpenAIReviewer]] = {
    "openai": OpenAIReviewer,
    "azure_openai": AzureOpenAIReviewer,
}


class ReviewerConfig(BaseModel):
    id: str
    kind: str = "openai"
    model: str
    endpoint: Optional[str] = None
    api_key_env: Optional[str] = None
    timeout_seconds: Optional[float] = None
    enabled: bool = True
    family: Optional[str] = None
    temperature: float = 0.0
    max_tokens: int = 800
    api_version: Optional[str] = None

    class Config:
        extra = "forbid"


def load_reviewer_pool(path: Union[str, Path]) -> List[ReviewerConfig]:
    """Parse the pool YAML; raises :class:`ConfigError` on any problem."""
    pool_path = Path(path)
    if not pool_path.exists():
        raise ConfigError(f"Reviewer pool file not found: {pool_path}")
    try:
        with open(pool_path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Reviewer pool {pool_path} is not valid YAML: {exc}") from exc

    entries = raw.get("reviewers") if isinstance(raw, dict) else None
    if not isinstance(entries, list):
        raise ConfigError(f"Reviewer pool {pool_path} must contain a 'reviewers' list")

    configs: List[ReviewerConfig] = []
    seen = set()
    for idx, entry in enumerate(entries):
        try:
            cfg = ReviewerConfig.model_validate(entry)
        except ValidationError as exc:
            raise ConfigError(f"Reviewer pool entry #{idx} is invalid: {exc}") from exc
        if cfg.kind not in REVIEWER_KINDS:
            raise ConfigError(f"Reviewer {cfg.id}: unknown kind {cfg.kind!r} (expected one of {sorted(REVIEWER_KINDS)})")
        if cfg.id in seen:
            raise ConfigError(f"Reviewer id {cfg.id!r} appears more than once")
        seen.add(cfg.id)
        configs.append(cfg)
    return configs


def build_reviewer(cfg: ReviewerConfig, default_timeout: float) -> BaseReviewer:
    api_key = os.getenv(cfg.api_key_env) if cfg.api_key_env else None
    if cfg.api_key_env and not api_key:
        raise ConfigError(f"Reviewer {cfg.id}: environment variable {cfg.api_key_env} is not set")
    kwargs = dict(
        endpoint=cfg.endpoint,
        api_key=api_key,
        timeout_seconds=cfg.timeout_seconds or default_timeout,
        family=cfg.family,
        temperature=cfg.temperature,
        max_tokens=cfg.max_tokens,
    )
    if cfg.kind == "azure_openai":
        if not cfg.endpoint:
            raise ConfigError(f"Reviewer {cfg.id}: azure_openai requires an endpoint")
        if cfg.api_version:
            kwargs["api_version"] = cfg.api_version
    return REVIEWER_KINDS[cfg.kind](cfg.id, cfg.model, **kwargs)


def build_reviewer_pool(
    configs: Optional[List[ReviewerConfig]] = None,
    settings: Optional[Settings] = None,
) -> List[BaseReviewer]:
    """Instantiate every enabled reviewer of the configured pool."""
    settings = settings or get_settings()
    if configs is None:
        configs = load_reviewer_pool(settings.REVIEWER_POOL_PATH)
    reviewers = [
        build_reviewer(cfg, settings.REVIEWER_TIMEOUT_SECONDS)
        for cfg in configs
        if cfg.enabled
    ]
    logger.info(
        "Reviewer pool built | enabled=%s | disabled=%s",
        [r.reviewer_id for r in reviewers],
        [c.id for c in configs if not c.enabled],
    )
    return reviewers
