"""
Errors - Failure Taxonomy
=============================================
Description: Exception hierarchy for the radar alert service. Every failure
             path degrades to "no alert shown" or a fallback visual, so these
             are raised at the seams (result validation, readiness guard,
             config validation) and caught where the degradation happens.
Author: Radar Alert Team
Version: 1.0.0
"""


class RadarAlertError(Exception):
    """Base class for all radar alert failures."""
    pass


class TransientFetchFailure(RadarAlertError):
    """Network error, timeout or non-2xx status from an upstream API."""

    def __init__(self, url: str, status: int = 0, error: str = None):
        self.url = url
        self.status = status
        self.error = error
        detail = error or f"HTTP {status}"
        super().__init__(f"{url}: {detail}")


class MalformedResponse(RadarAlertError):
    """Upstream body could not be parsed."""
    pass


class RenderTargetUnavailable(RadarAlertError):
    """Render surface missing or overlay container not attached in time."""
    pass


class ConfigurationDefect(RadarAlertError):
    """Invalid configuration value; callers fall back to a safe default."""
    pass
