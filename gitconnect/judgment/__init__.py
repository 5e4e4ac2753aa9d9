"""
Judgment: normalized GitHub contexts and model verdicts
"""

from .context import ContextFetcher, FetchLimits, GitHubDataError
from .invoker import JudgmentConfigError, JudgmentInvocationError, JudgmentInvoker, Verdict
from .routes import router as judgment_router

__all__ = [
    "ContextFetcher",
    "FetchLimits",
    "GitHubDataError",
    "JudgmentConfigError",
    "JudgmentInvocationError",
    "JudgmentInvoker",
    "Verdict",
    "judgment_router",
]
