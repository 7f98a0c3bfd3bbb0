class EnsembleError(Exception): pass
class ModelUnavailableError(EnsembleError): pass
class PersistenceError(EnsembleError): pass
class ConfigurationError(EnsembleError): pass
class InvalidDrawError(EnsembleError): pass


class InsufficientDataError(EnsembleError):
    """History is shorter than the minimum an operation needs."""

    def __init__(self, required: int, available: int, operation: str = "operation"):
        self.required = required
        self.available = available
        self.operation = operation
        super().__init__(
            f"Insufficient data for {operation}: need {required} draws, got {available}"
        )
