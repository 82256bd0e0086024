"""pushstore: storage engine for over-the-air release distribution."""

from pushstore.config import Settings
from pushstore.facade import StorageFacade
from pushstore.factory import create_storage

__version__ = "0.1.0"

__all__ = ["Settings", "StorageFacade", "create_storage", "__version__"]
