"""Pulse progressive feature rollout."""

from pulse.rollout.engine import RolloutEngine
from pulse.rollout.models import Experiment, ExperimentOutcome, RolloutSummary
from pulse.rollout.scheduler import PeriodicJob

__all__ = [
    "Experiment",
    "ExperimentOutcome",
    "PeriodicJob",
    "RolloutEngine",
    "RolloutSummary",
]
