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
from ..exceptions import assert_config
from .validation import get_invalid_params

CONFIG_FILE = os.path.join(os.path.dirname(__file__), "config.yaml")
VALIDATION_FILE = os.path.join(os.path.dirname(__file__), "config_validation.yaml")


def load_library_config(
    config_file: str = CONFIG_FILE,
    validation_file: str = VALIDATION_FILE,
) -> aconfig.Config:
    """Load a config file with env overrides and validate it

    Args:
        config_file:  str
            Path to the yaml config
        validation_file:  str
            Path to the parallel validation yaml. Env overrides are never
            applied to validation rules.

    Returns:
        config:  aconfig.Config
            The loaded and validated config
    """
    loaded = aconfig.Config.from_yaml(config_file, override_env_vars=True)
    validation = aconfig.Config.from_yaml(validation_file, override_env_vars=False)
    invalid_params = get_invalid_params(loaded, validation)
    assert_config(
        not invalid_params,
        f"Library configuration found invalid values: {invalid_params}",
    )
    return loaded


library_config = load_library_config()

# Do initial alog configuration
alog.configure(
    default_level=library_config.log_level,
    filters=library_config.log_filters,
    formatter="json" if library_config.log_json else "pretty",
    thread_id=library_config.log_thread_id,
)
