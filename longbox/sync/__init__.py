"""
Fetch pipeline primitives.

Clock, token-bucket admission, retry state machine, single-flight response
cache and worker pool. The orchestrator combining them lives in
longbox.sync.orchestrator.
"""

from longbox.sync.cache import CacheStats, ResponseCache
from longbox.sync.clock import Clock, ManualClock, SystemClock
from longbox.sync.rate_limiter import AdmissionDeadlineError, RateLimiter, TokenBucket
from longbox.sync.retry import RetryPolicy, RetryState, RetryStateMachine, run_with_retry
from longbox.sync.worker_pool import WorkerPool

__all__ = [
    "AdmissionDeadlineError",
    "CacheStats",
    "Clock",
    "ManualClock",
    "RateLimiter",
    "ResponseCache",
    "RetryPolicy",
    "RetryState",
    "RetryStateMachine",
    "SystemClock",
    "TokenBucket",
    "WorkerPool",
    "run_with_retry",
]
