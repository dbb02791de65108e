"""Predictive preloading of the likely next tracks."""

from encore.prediction.context import PlayRecord, PredictionContext, load_context, save_context
from encore.prediction.preloader import (
    TIME_OF_DAY_RULES,
    PredictionScore,
    PredictivePreloader,
    time_of_day_bonus,
)

__all__ = [
    "PlayRecord",
    "PredictionContext",
    "PredictionScore",
    "PredictivePreloader",
    "TIME_OF_DAY_RULES",
    "load_context",
    "save_context",
    "time_of_day_bonus",
]
