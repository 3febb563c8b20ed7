"""LLMUsage: discover AI-coding service credentials and aggregate their usage."""

__version__ = "0.1.0"

from llmusage.config import ConfigLoader
from llmusage.models import (
    Account,
    DiscoveryResult,
    PlanInfo,
    Service,
    Token,
    TokenSource,
    UsageData,
    UsageMetric,
    UsagePeriod,
)
from llmusage.usage import FetchResult, LLMUsage

__all__ = [
    "Account",
    "ConfigLoader",
    "DiscoveryResult",
    "FetchResult",
    "LLMUsage",
    "PlanInfo",
    "Service",
    "Token",
    "TokenSource",
    "UsageData",
    "UsageMetric",
    "UsagePeriod",
    "__version__",
]
