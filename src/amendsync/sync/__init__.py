"""Edit reconciliation between local buffers and the remote store."""

from amendsync.sync.reconciler import (
    EditorView,
    EditSession,
    FieldState,
    ReconcilerState,
)

__all__ = ["EditSession", "EditorView", "FieldState", "ReconcilerState"]
