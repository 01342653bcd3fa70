from .controller import (
    FAILURE_POLICY,
    FailureAction,
    StatusCallback,
    SyncController,
    SyncState,
)

__all__ = [
    "FAILURE_POLICY",
    "FailureAction",
    "StatusCallback",
    "SyncController",
    "SyncState",
]
