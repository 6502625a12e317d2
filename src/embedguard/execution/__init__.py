"""embedguard execution -- deciding whether, when and how often to retry.

::

    raw failure ──► classifier.classify ──► FailureRecord
                                               │
                                               ▼
    RecoveryOrchestrator.should_retry ── BackoffPolicy.compute
                │                    └── RateLimitWindow.is_active
                ▼
    RecoveryOrchestrator.execute(action)

    LoadQueue bounds how many embeds run at once.
"""

from embedguard.execution.classifier import classify, user_message
from embedguard.execution.load_queue import LoadPriority, LoadQueue
from embedguard.execution.orchestrator import RecoveryOrchestrator
from embedguard.execution.rate_limit import RateLimitWindow
from embedguard.execution.retry import BackoffPolicy

__all__ = [
    "BackoffPolicy",
    "LoadPriority",
    "LoadQueue",
    "RateLimitWindow",
    "RecoveryOrchestrator",
    "classify",
    "user_message",
]
