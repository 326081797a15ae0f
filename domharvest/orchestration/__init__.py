"""Execution orchestration for harvest requests."""

from .batch_runner import BatchRunner, DEFAULT_CONCURRENCY
from .extraction_planner import (
    ExecutionMode,
    ExecutionPlan,
    ExtractionPlanner,
    RESOLVE_ALL_SCRIPT,
    RESOLVE_ONE_SCRIPT,
    classify,
    compile_plan,
)
from .harvest_session import HarvestRequest, HarvestSession, SessionState
from .rate_limiter import RateLimiter, TokenBucket
from .retry import RetryPolicy, RetryState, run_with_retry

__all__ = [
    # Batch
    "BatchRunner",
    "DEFAULT_CONCURRENCY",
    # Planner
    "ExecutionMode",
    "ExecutionPlan",
    "ExtractionPlanner",
    "RESOLVE_ALL_SCRIPT",
    "RESOLVE_ONE_SCRIPT",
    "classify",
    "compile_plan",
    # Session
    "HarvestRequest",
    "HarvestSession",
    "SessionState",
    # Rate Limiter
    "RateLimiter",
    "TokenBucket",
    # Retry
    "RetryPolicy",
    "RetryState",
    "run_with_retry",
]
