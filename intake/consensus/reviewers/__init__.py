"""
Reviewer adapters: one interface, one adapter per backend.
"""

from intake.consensus.reviewers.base import BaseReviewer, parse_reviewer_response
from intake.consensus.reviewers.openai_reviewer import AzureOpenAIReviewer, JSONParser, OpenAIReviewer
from intake.consensus.reviewers.registry import (
    ReviewerConfig,
    build_reviewer,
    build_reviewer_pool,
    load_reviewer_pool,
)

__all__ = [
    "BaseReviewer",
    "parse_reviewer_response",
    "OpenAIReviewer",
    "AzureOpenAIReviewer",
    "JSONParser",
    "ReviewerConfig",
    "build_reviewer",
    "build_reviewer_pool",
    "load_reviewer_pool",
]
