"""phylopipe package."""

from .config import PipelineConfig, Settings, load_settings
from .distmat import DistanceMatrix, read_distance
from .errors import PipelineError
from .pipeline import Pipeline, PipelineOutcome, run_pipeline
from .stats import permutation_test
from .steps import Step
from .topology import TopologyClassifier

__all__ = [
    "DistanceMatrix",
    "Pipeline",
    "PipelineConfig",
    "PipelineError",
    "PipelineOutcome",
    "Settings",
    "Step",
    "TopologyClassifier",
    "load_settings",
    "permutation_test",
    "read_distance",
    "run_pipeline",
]

__version__ = "0.1.0"
