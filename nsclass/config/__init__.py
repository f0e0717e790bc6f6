"""
Library config for the operator runtime. Values are read once at import time
from config.yaml (with env overrides) and may be overridden on the command
line.
"""

# Local
from . import validation
from .config import configure_logging, library_config


# Define __getattr__ on this module to delegate to the library config.
def __getattr__(name):
    if name in library_config or hasattr({}, name):
        return getattr(library_config, name)
    raise AttributeError(f"No such config attribute {name}")


# Only expose the library config keys
__all__ = list(library_config.keys())
