"""
This module loads the library config at import time, validates it and does the
initial log config
"""

# Standard
import os

# First Party
import aconfig
import alog

# Local
from .validation import get_invalid_params

CONFIG_DIR = os.path.dirname(__file__)


def _load(file_name: str, override_env_vars: bool) -> aconfig.Config:
    return aconfig.Config.from_yaml(
        os.path.join(CONFIG_DIR, file_name),
        override_env_vars=override_env_vars,
    )


def configure_logging(config: aconfig.Config, formatter=None):
    """(Re)configure alog from the logging keys of the given config. The
    formatter defaults to alog's json or pretty formatter based on log_json.
    """
    alog.configure(
        default_level=config.log_level,
        filters=config.log_filters,
        formatter=formatter or ("json" if config.log_json else "pretty"),
        thread_id=config.log_thread_id,
    )


# Read the library config, allowing env overrides. The validation file does not
# allow env overrides.
library_config = _load("config.yaml", override_env_vars=True)
validation_config = _load("config_validation.yaml", override_env_vars=False)

invalid_params = get_invalid_params(library_config, validation_config)
assert (
    not invalid_params
), f"Library configuration found invalid values: {invalid_params}"

configure_logging(library_config)
