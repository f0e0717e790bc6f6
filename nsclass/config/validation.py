"""
Module to validate values in the loaded library config against the parallel
config_validation.yaml file
"""

# Standard
from typing import Any, Dict, List, Optional, Union
import abc

# First Party
import aconfig
import alog

# Local
from .. import constants
from ..utils import nested_get  # pylint: disable=cyclic-import

log = alog.use_channel("CONFG")


## Public ######################################################################


def get_invalid_params(
    config: aconfig.Config,
    validation_config: aconfig.Config,
) -> List[str]:
    """Get a list of any params that are invalid

    Args:
        config:  aconfig.Config
            The parsed config with any override values
        validation_config:  aconfig.Config
            The parallel config holding validation setup

    Returns:
        invalid_params:  List[str]
            A list of all dotted keys for parameters that fail validation
    """
    invalid_params = []
    for val_key, validator in parse_validation_config(validation_config).items():
        if not validator.validate(nested_get(config, val_key)):
            log.warning("Found invalid config key [%s]", val_key)
            invalid_params.append(val_key)
    return invalid_params


def parse_validation_config(
    validation_config: dict,
    prefix_parts: Optional[List[str]] = None,
) -> Dict[str, "ValidatedParameter"]:
    """Recursively parse the validation config into a flat dict from dotted
    keys to ValidatedParameter instances. Any nested dict with a known "type"
    is a parameter, all others are recursed into.
    """
    output_dict = {}
    prefix_parts = prefix_parts or []
    for key, val in validation_config.items():
        assert isinstance(key, str), "Only string keys allowed!"
        if not isinstance(val, dict):
            continue
        key_parts = prefix_parts + [key]
        nested_key = constants.NESTED_DICT_DELIM.join(key_parts)
        param = None
        if val.get("type") in PARAMETER_TYPES:
            log.debug3("Constructing parameter at [%s]: %s", nested_key, val)
            param_args = dict(val)
            param = PARAMETER_TYPES[param_args.pop("type")](**param_args)
        if param:
            output_dict[nested_key] = param
        else:
            log.debug3("Recursing into %s", nested_key)
            output_dict.update(parse_validation_config(val, prefix_parts=key_parts))
    return output_dict


## Parameters ##################################################################

# pylint: disable=too-few-public-methods


class ValidatedParameter(abc.ABC):
    """A single config value with type and value validation"""

    TYPES = ()

    def __init__(self, optional: bool = False):
        self.optional = optional

    def validate(self, value: Any) -> bool:
        """Validate a read value

        Args:
            value:  Any
                The value found in the library config

        Returns:
            valid:  bool
                True if the value is valid, False otherwise
        """
        if self.optional and value is None:
            return True

        # bool is a subclass of int, so reject it for numeric parameters
        if isinstance(value, bool) and bool not in self.TYPES:
            log.warning("Invalid bool value for %s", type(self).__name__)
            return False
        if not isinstance(value, self.TYPES):
            log.warning("Invalid type <%s>", type(value))
            return False

        valid_value = self._validate_value(value)
        if not valid_value:
            log.warning("Invalid value [%s]", value)
        return valid_value

    @abc.abstractmethod
    def _validate_value(self, value: Any) -> bool:
        """Type specific value validation"""


class NumberParameter(ValidatedParameter):
    """A number with optional inclusive bounds"""

    TYPES = (int, float)

    def __init__(
        self,
        *,
        min: Optional[Union[int, float]] = None,  # pylint: disable=redefined-builtin
        max: Optional[Union[int, float]] = None,  # pylint: disable=redefined-builtin
        **kwargs,
    ):
        super().__init__(**kwargs)
        self._min = min
        self._max = max

    def _validate_value(self, value: Union[int, float]) -> bool:
        return (self._min is None or value >= self._min) and (
            self._max is None or value <= self._max
        )


class IntParameter(NumberParameter):
    TYPES = (int,)


class StrParameter(ValidatedParameter):
    """A string with an optional minimum length"""

    TYPES = (str,)

    def __init__(self, *, min_len: Optional[int] = None, **kwargs):
        super().__init__(**kwargs)
        self._min_len = min_len

    def _validate_value(self, value: str) -> bool:
        return self._min_len is None or len(value) >= self._min_len


class BoolParameter(ValidatedParameter):
    TYPES = (bool,)

    def _validate_value(self, value: bool) -> bool:
        return True


class EnumParameter(ValidatedParameter):
    """A parameter with a fixed set of valid values"""

    TYPES = (str, int, type(None))

    def __init__(self, *, values: List[Union[str, int, None]], **kwargs):
        super().__init__(**kwargs)
        assert isinstance(values, list) and values, "Must specify enum values!"
        self.values = values

    def _validate_value(self, value: Union[str, int, None]) -> bool:
        return value in self.values


# pylint: enable=too-few-public-methods

# Map from the "type" key in the validation file to the parameter class
PARAMETER_TYPES = {
    "number": NumberParameter,
    "int": IntParameter,
    "str": StrParameter,
    "bool": BoolParameter,
    "enum": EnumParameter,
}
