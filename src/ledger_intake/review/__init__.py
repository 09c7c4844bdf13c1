"""Classification and confirmation workflow."""

from .workflow import (
    BatchReport,
    ClassificationLocked,
    ConfirmationResult,
    ConfirmationStatus,
    ConfirmationWorkflow,
    ReviewForm,
    apply_edits,
    initial_classification,
)

__all__ = [
    "BatchReport",
    "ClassificationLocked",
    "ConfirmationResult",
    "ConfirmationStatus",
    "ConfirmationWorkflow",
    "ReviewForm",
    "apply_edits",
    "initial_classification",
]
