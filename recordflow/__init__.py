from recordflow.cleaning import clean_batch, normalize_field, standardize_field
from recordflow.engine import Pipeline, PipelineOutput, Step, StepTrace, run_pipeline
from recordflow.errors import ConfigError, PipelineError
from recordflow.quality import analyze_quality
from recordflow.schemas import CleanOptions, QualityReport, ValidationRule


__all__ = [
    "CleanOptions",
    "ConfigError",
    "Pipeline",
    "PipelineError",
    "PipelineOutput",
    "QualityReport",
    "Step",
    "StepTrace",
    "ValidationRule",
    "analyze_quality",
    "clean_batch",
    "normalize_field",
    "run_pipeline",
    "standardize_field",
]
