"""Local copies of drive models for use while the drive is detached."""

from .cache import OfflineModel, OfflineModelCache, split_model_path
from .exceptions import OfflineModelError

__all__ = ["OfflineModel", "OfflineModelCache", "OfflineModelError", "split_model_path"]
