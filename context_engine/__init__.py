"""Context engine: incremental workspace indexing, hybrid search and behavior memory."""

__version__ = "0.1.0"

from .config import Config, ConfigurationError
from .engine import ContextEngine, get_engine

__all__ = ["Config", "ConfigurationError", "ContextEngine", "get_engine", "__version__"]
