"""Error taxonomy for the local explanation engine."""

from __future__ import annotations


class ExplanationError(Exception):
    """Base class for explanation engine failures."""


class UnfitExplainerError(ExplanationError, RuntimeError):
    """Explain was invoked before the explainer was fit on a corpus."""


class UnknownCategoryError(ExplanationError, ValueError):
    def __init__(self, feature: str, value: object, levels: tuple[object, ...]) -> None:
        self.feature = feature
        self.value = value
        self.levels = levels
        super().__init__(f"Unseen level {value!r} for categorical feature '{feature}'. Known levels: {list(levels)}")


class DegenerateFeatureError(ExplanationError):
    """Indicator column cannot enter the surrogate fit (zero variance or collinear)."""

    def __init__(self, column: int, reason: str) -> None:
        self.column = column
        self.reason = reason
        super().__init__(f"Indicator column {column} is degenerate: {reason}")


class SingularFitError(ExplanationError):
    """No viable feature subset exists for the local surrogate."""


class BlackBoxInvocationError(ExplanationError):
    """The black-box model failed or returned malformed probabilities."""


class ExplainCancelledError(ExplanationError):
    """An in-flight explain call was cancelled; no explanation is produced."""
