# Application Mastery Package
from .estimator import MasteryEstimator, daily_performance
from .gap_ranker import GapRanker, MasteryThresholds

__all__ = ["MasteryEstimator", "daily_performance", "GapRanker", "MasteryThresholds"]
