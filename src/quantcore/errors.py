"""Exception hierarchy for the quantitative core."""


class QuantCoreError(Exception):
    """Base exception for quantcore errors"""
    pass


class InvalidParameterError(QuantCoreError, ValueError):
    """Raised when an input is out of its valid domain (non-positive price, bad weight, ...)"""
    pass


class InvalidCorrelationMatrixError(InvalidParameterError):
    """Raised when a correlation matrix is malformed or not positive definite"""
    pass


class NumericDegenerateError(QuantCoreError):
    """Raised in strict mode when a computation hits a zero denominator"""
    pass


class NonConvergenceError(QuantCoreError):
    """Raised in strict mode when an iterative solver exhausts its budget.

    The best estimate reached is kept on the exception.
    """

    def __init__(self, message: str, estimate: float, iterations: int):
        self.estimate = estimate
        self.iterations = iterations
        super().__init__(f"{message} (estimate={estimate:.6f}, iterations={iterations})")
