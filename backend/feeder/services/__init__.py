from .alerts import AlertDetails, AlertEngine, Observation
from .dispatcher import CommandDispatcher, DispatchResult
from .statistics import compute_statistics
from .worker import AlertWorker

__all__ = [
    "AlertDetails",
    "AlertEngine",
    "AlertWorker",
    "CommandDispatcher",
    "DispatchResult",
    "Observation",
    "compute_statistics",
]
