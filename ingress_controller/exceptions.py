"""Exception taxonomy for the ingress controller.

Every error the controller raises on purpose derives from ``ControllerError``
so the reconciliation engine can log it and move on to the next event.
Only ``ConfigurationError`` is allowed to end the process, and only during
startup.
"""

from typing import Optional


class ControllerError(Exception):
    """Base class for all controller errors."""


class ConfigurationError(ControllerError):
    """
    Raised when the controller configuration or cluster credentials are unusable.

    This is the single fatal error class: the CLI exits with status 1 when it
    surfaces during startup.
    """


class TransientAPIError(ControllerError):
    """
    Raised when a Kubernetes API call fails for a reason that may go away.

    Network failures, timeouts, 5xx and 429 responses fall here. Watches
    resubscribe with backoff; reconciliations are retried on the next resync.
    """

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ResolutionError(ControllerError):
    """
    Raised when an ingress backend cannot be resolved to a routing entry.

    The reconciliation of the affected ingress is skipped; other ingresses
    are unaffected.
    """


class AmbiguousPortError(ResolutionError):
    """Raised when more than one service port matches an ingress backend port."""


class PublishError(ControllerError):
    """
    Raised when the routing configuration could not be written or renamed.

    The previously published file is left untouched.
    """


class ProcessError(ControllerError):
    """Raised when the data-plane process could not be started or signalled."""
