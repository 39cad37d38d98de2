"""
Simulation Errors — input validation failures
==============================================

Every error raised by the simulation core is a ``ValueError`` so callers
that already guard numeric input with ``except ValueError`` keep working.
Zero volatility is a valid degenerate case and never raises.
"""


class SimulationError(ValueError):
    """Base class for invalid simulation input."""


class InsufficientDataError(SimulationError):
    """Price history too short to estimate return parameters."""

    def __init__(self, count: int, required: int = 2):
        self.count = count
        self.required = required
        super().__init__(
            f"Need at least {required} price points to estimate returns, got {count}"
        )


class MissingSnapshotFieldsError(SimulationError):
    """Pool snapshot lacks a field the yield model needs."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Pool snapshot is missing required field '{field}'")


class InvalidRangeConfigurationError(SimulationError):
    """Range-bounded request without a usable price range."""
