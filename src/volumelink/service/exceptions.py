"""Exceptions raised while generating or installing the unattended service."""


class ServiceError(Exception):
    """Raised when the unattended script or OS service cannot be set up."""
