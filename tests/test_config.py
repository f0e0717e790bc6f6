"""
Tests for the library config module

NOTE: Python makes it hard to change env vars in a way that will effect import
    time, so we're relying on the fact that aconfig is well tested and not
    actually validating the env-var override behavior!
"""

# Standard
import os

# Third Party
import pytest

# First Party
import aconfig

# Local
from nsclass import config, constants
from nsclass.config.config import CONFIG_DIR
from nsclass.config.validation import (
    BoolParameter,
    EnumParameter,
    IntParameter,
    NumberParameter,
    StrParameter,
    get_invalid_params,
    parse_validation_config,
)
from nsclass.test_helpers.helpers import library_config


def test_config_defaults():
    """Make sure the defaults match the documented operator behavior"""
    assert config.max_concurrent_reconciles == 5
    assert config.child_cleanup_policy == constants.CLEANUP_POLICY_ORPHAN
    assert config.rate_limiter.base_delay == pytest.approx(0.005)
    assert config.rate_limiter.max_delay == pytest.approx(30)
    assert config.rate_limiter.qps == pytest.approx(10)
    assert config.rate_limiter.burst == 100
    assert config.dry_run is False


def test_config_unknown_attribute():
    """Make sure that unknown keys raise AttributeError"""
    with pytest.raises(AttributeError):
        config.not_a_real_key  # pylint: disable=pointless-statement


def test_library_config_override_reverts():
    """Make sure the test helper reverts overrides"""
    with library_config(max_concurrent_reconciles=2):
        assert config.max_concurrent_reconciles == 2
    assert config.max_concurrent_reconciles == 5


def test_shipped_config_is_valid():
    """Make sure the shipped config passes its own validation"""
    validation_config = aconfig.Config.from_yaml(
        os.path.join(CONFIG_DIR, "config_validation.yaml"),
        override_env_vars=False,
    )
    assert not get_invalid_params(config.library_config, validation_config)


########################
## get_invalid_params ##
########################


def test_get_invalid_params_all_valid_params():
    """Test that get_invalid_params returns no invalid params when all are set
    to valid values
    """
    assert not get_invalid_params(
        config=aconfig.Config({"key": 1}, override_env_vars=False),
        validation_config=aconfig.Config(
            {"key": {"type": "int", "min": 0, "max": 1}}, override_env_vars=False
        ),
    )


def test_get_invalid_params_nested():
    """Test that nested keys are validated and reported with dotted names"""
    assert get_invalid_params(
        config=aconfig.Config(
            {"rate_limiter": {"qps": -1, "burst": 10}}, override_env_vars=False
        ),
        validation_config=aconfig.Config(
            {
                "rate_limiter": {
                    "qps": {"type": "number", "min": 0},
                    "burst": {"type": "int", "min": 1},
                }
            },
            override_env_vars=False,
        ),
    ) == ["rate_limiter.qps"]


def test_get_invalid_params_missing_key():
    """Test that a key missing from the config is invalid unless optional"""
    validation_config = aconfig.Config(
        {
            "required": {"type": "str"},
            "not_required": {"type": "str", "optional": True},
        },
        override_env_vars=False,
    )
    assert get_invalid_params(
        aconfig.Config({}, override_env_vars=False), validation_config
    ) == ["required"]


def test_parse_validation_config_types():
    """Make sure each type name maps to the right parameter class"""
    parsed = parse_validation_config(
        {
            "a": {"type": "number"},
            "b": {"type": "int"},
            "c": {"type": "str"},
            "d": {"type": "bool"},
            "e": {"type": "enum", "values": ["x"]},
            "nested": {"f": {"type": "int"}},
        }
    )
    assert isinstance(parsed["a"], NumberParameter)
    assert isinstance(parsed["b"], IntParameter)
    assert isinstance(parsed["c"], StrParameter)
    assert isinstance(parsed["d"], BoolParameter)
    assert isinstance(parsed["e"], EnumParameter)
    assert isinstance(parsed["nested.f"], IntParameter)


################
## Parameters ##
################


@pytest.mark.parametrize(
    ["param", "value", "valid"],
    [
        (NumberParameter(min=0), 0.5, True),
        (NumberParameter(min=0), -0.5, False),
        (NumberParameter(max=1), 2, False),
        (NumberParameter(), True, False),
        (IntParameter(), 1.5, False),
        (IntParameter(min=1), 1, True),
        (StrParameter(min_len=2), "a", False),
        (StrParameter(), "", True),
        (BoolParameter(), False, True),
        (BoolParameter(), "true", False),
        (EnumParameter(values=["orphan", "cascade"]), "cascade", True),
        (EnumParameter(values=["orphan", "cascade"]), "delete", False),
    ],
)
def test_parameter_validation(param, value, valid):
    """Make sure each parameter type accepts and rejects the right values"""
    assert param.validate(value) is valid
