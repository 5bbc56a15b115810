"""
Exception classes shared by the pricing engine, the routing client and the
booking routes.

Routes catch these to flash a friendly message or answer with a JSON 400
instead of a generic 500 error.
"""


class PricingError(ValueError):
    """Raised when a price cannot be computed from the given inputs."""

    def __init__(self, message: str = "Error: invalid pricing input") -> None:
        self.message = message
        super().__init__(self.message)


class TierOverlapError(PricingError):
    """Raised when a pricing tier range overlaps an existing tier."""

    def __init__(self, message: str = "Error: pricing tier ranges overlap") -> None:
        super().__init__(message)


class RoutingError(Exception):
    """Raised when a driving route cannot be resolved."""

    def __init__(self, message: str = "Error: route could not be resolved") -> None:
        self.message = message
        super().__init__(self.message)


class ValidationError(ValueError):
    """Raised when submitted booking data is invalid.

    ``errors`` maps field names to messages so forms can show them inline.
    """

    def __init__(self, errors: dict, message: str = "Error: invalid form data") -> None:
        self.errors = errors
        self.message = message
        super().__init__(self.message)


class VehicleUnavailableError(Exception):
    """Raised when a vehicle is not available for the requested dates."""

    def __init__(self, message: str = "This vehicle is not available for the selected dates.") -> None:
        self.message = message
        super().__init__(self.message)
