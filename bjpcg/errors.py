from typing import Optional


class SolverError(Exception):
    """Base class for failures that abort a solve"""


class DimensionMismatch(SolverError):
    def __init__(self, name, shape, expected_shape):
        self.name = name
        self.shape = shape
        self.expected_shape = expected_shape
        super().__init__(f"{name} has shape {shape} expected {expected_shape}")


class BreakdownError(SolverError):
    """A PCG scalar that must be nonzero for SPD input came back as zero"""

    def __init__(self, quantity: str, iteration: int, residual_norm: float):
        self.quantity = quantity
        self.iteration = iteration
        self.residual_norm = residual_norm
        super().__init__(
            f"{quantity} == 0 at iteration {iteration} "
            f"(residual norm {residual_norm:.6e}); matrix is not SPD or is singular"
        )


class SingularBlockError(SolverError):
    """Non-finite values reached the iterate, usually from a singular diagonal block"""

    def __init__(self, quantity: str, iteration: int, residual_norm: float):
        self.quantity = quantity
        self.iteration = iteration
        self.residual_norm = residual_norm
        super().__init__(
            f"non-finite {quantity} at iteration {iteration} "
            f"(residual norm {residual_norm:.6e}); "
            "a diagonal block probably has a zero pivot"
        )


class DeviceError(SolverError):
    def __init__(self, operation: str, iteration: Optional[int] = None):
        self.operation = operation
        self.iteration = iteration
        where = "" if iteration is None else f" at iteration {iteration}"
        super().__init__(f"device failure during {operation}{where}")
