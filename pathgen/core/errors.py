"""Error kinds raised by trajectory setup, solving and sampling."""


class ConfigurationError(ValueError):
    """Invalid setup: polynomial order, dimensions, vertex count, parameters."""


class DegenerateInputError(ValueError):
    """Input that makes the linear system singular (zero durations, repeated positions)."""


class SamplingDomainError(ValueError):
    """Evaluation outside the trajectory's time domain."""
