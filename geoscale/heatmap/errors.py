"""Heat map exceptions."""

from typing import Optional


class HeatMapError(Exception):
    """Base exception for heat map operations."""


class InvalidGridError(HeatMapError, ValueError):
    """Grid parameters out of range (size or radius <= 0, bad coordinates)."""


class ProjectNotFoundError(HeatMapError):
    """Project does not exist."""

    def __init__(self, project_id):
        super().__init__(f"Project {project_id} not found")
        self.project_id = project_id


class MissingCoordinatesError(HeatMapError):
    """Project has no latitude/longitude to center a grid on."""

    def __init__(self, project_id):
        super().__init__(
            f"Project {project_id} has no geographic coordinates set. "
            f"Add a location to generate heat maps."
        )
        self.project_id = project_id


class LocationNotFoundError(HeatMapError):
    """No town name could be resolved at a coordinate."""


class ScanAbortedError(HeatMapError):
    """
    Scan stopped before every point was checked.

    Carries the partial ScanResult so already-completed points survive.
    """

    def __init__(self, message: str, partial_result=None, cause: Optional[Exception] = None):
        super().__init__(message)
        self.partial_result = partial_result
        self.cause = cause


class InvalidStateError(HeatMapError):
    """Session transition not allowed from its current state."""


class NotConfiguredError(HeatMapError):
    """An external API the operation needs has no credentials."""
