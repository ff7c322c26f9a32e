"""Exceptions raised by the offline model cache."""


class OfflineModelError(Exception):
    """Raised when a model cannot be listed, copied into, or removed from the offline cache."""
