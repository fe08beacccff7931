"""Keyword matching, analysis and reply orchestration."""

from .dispatcher import Dispatcher
from .keywords import KeywordMatch, match_keyword
from .prompts import PromptTemplateStore
from .runner import DispatchRunner
from .session_client import (
    AnalysisError,
    AnalysisSession,
    AnalysisSessionClient,
    AnalysisTimeout,
)

__all__ = [
    "AnalysisError",
    "AnalysisSession",
    "AnalysisSessionClient",
    "AnalysisTimeout",
    "DispatchRunner",
    "Dispatcher",
    "KeywordMatch",
    "PromptTemplateStore",
    "match_keyword",
]
