from .dsl import job, matrix, expand
from .loader import load_matrix
from .model import JobOutcome, JobSpec, JobStatus, MatrixDefinition, MatrixResult, Overall, Phase, Step
from .orchestrator import MatrixOrchestrator, run_matrix

__all__ = [
    "job", "matrix", "expand", "load_matrix",
    "JobOutcome", "JobSpec", "JobStatus", "MatrixDefinition", "MatrixResult", "Overall", "Phase", "Step",
    "MatrixOrchestrator", "run_matrix",
]
