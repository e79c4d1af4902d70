from refinery.config import RefineryConfig
from refinery.diagnosis import diagnose
from refinery.extraction import JsonExtractionError, extract_json
from refinery.planning import PlanningWorkflow, PlanResult
from refinery.refinement import ProgressEvent, RefinementEngine, ReplyOutcome, ReplyResult

__version__ = "0.1.0"

__all__ = [
    "JsonExtractionError",
    "PlanResult",
    "PlanningWorkflow",
    "ProgressEvent",
    "RefinementEngine",
    "RefineryConfig",
    "ReplyOutcome",
    "ReplyResult",
    "__version__",
    "diagnose",
    "extract_json",
]
