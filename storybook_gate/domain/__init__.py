from .admission import AdmissionLimiter, WindowConfig
from .errors import DomainError, ProviderUnavailable
from .watcher import AttemptBudget, JobState, JobStatus, JobWatcher

__all__ = [
    "AdmissionLimiter",
    "AttemptBudget",
    "DomainError",
    "JobState",
    "JobStatus",
    "JobWatcher",
    "ProviderUnavailable",
    "WindowConfig",
]
