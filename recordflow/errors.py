class RecordflowError(Exception):
    pass


class ConfigError(RecordflowError, ValueError):
    """Malformed or mismatched step, rule or clean configuration."""

    def __init__(self, message: str, *, step_index: int | None = None, step_name: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.step_index = step_index
        self.step_name = step_name

    def __str__(self) -> str:
        if self.step_index is None:
            return self.message
        return f"step {self.step_index} ({self.step_name}): {self.message}"


class PipelineError(RecordflowError):
    def __init__(self, *, step_index: int, step_name: str, trace: list, cause: Exception) -> None:
        super().__init__(f"step {step_index} ({step_name}) failed: {cause}")
        self.step_index = step_index
        self.step_name = step_name
        self.trace = trace
        self.cause = cause


class PipelineNotFoundError(RecordflowError, LookupError):
    pass
