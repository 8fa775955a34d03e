"""
Module to validate values in a loaded config against the parallel validation
file. Each leaf of the validation file that carries a "type" key describes one
parameter.
"""

# Standard
from typing import Any, Dict, List, Optional, Union
import abc
import builtins

# First Party
import aconfig
import alog

# Local
from .. import constants
from ..utils import nested_get  # pylint: disable=cyclic-import

log = alog.use_channel("CONFG")


################################################################################
## Public ######################################################################
################################################################################


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
            A list of all nested string keys for parameters that fail
            validation
    """
    invalid_params = []
    for val_key, validator in _parse_validation_config(validation_config).items():
        if not validator.validate(nested_get(config, val_key)):
            log.warning("Found invalid config key [%s]", val_key)
            invalid_params.append(val_key)
    return invalid_params


################################################################################
## Implementation ##############################################################
################################################################################

# pylint: disable=too-few-public-methods


class _Parameter(abc.ABC):
    """A single config parameter with a set of allowed types and a value check
    specific to those types
    """

    TYPE_KEY = None
    TYPES = []

    def __init__(self, optional: bool = False):
        self.optional = optional

    def validate(self, value: Any) -> bool:
        """Validate a loaded value

        Args:
            value:  Any
                The value read from the config

        Returns:
            valid:  bool
                True if the value is valid, False otherwise
        """
        if self.optional and value is None:
            return True
        if not isinstance(value, tuple(self.TYPES)) or (
            isinstance(value, bool) and bool not in self.TYPES
        ):
            log.warning("Invalid type <%s>", type(value))
            return False
        valid_value = self._validate_value(value)
        if not valid_value:
            log.warning("Invalid value [%s]", value)
        return valid_value

    @abc.abstractmethod
    def _validate_value(self, value: Any) -> bool:
        """Type specific value check"""


class _NumberParameter(_Parameter):
    """int or float with optional inclusive bounds"""

    TYPE_KEY = "number"
    TYPES = [int, float]

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


class _IntParameter(_NumberParameter):
    """Bounded int"""

    TYPE_KEY = "int"
    TYPES = [int]


class _StrParameter(_Parameter):
    """str with optional length bounds"""

    TYPE_KEY = "str"
    TYPES = [str]

    def __init__(
        self,
        *,
        min_len: Optional[int] = None,
        max_len: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self._min_len = min_len
        self._max_len = max_len

    def _validate_value(self, value: str) -> bool:
        return (self._min_len is None or len(value) >= self._min_len) and (
            self._max_len is None or len(value) <= self._max_len
        )


class _BoolParameter(_Parameter):
    TYPE_KEY = "bool"
    TYPES = [bool]

    def _validate_value(self, value: bool) -> bool:
        return True


class _EnumParameter(_Parameter):
    """One of a fixed set of values"""

    TYPE_KEY = "enum"
    TYPES = [str, int, type(None)]

    def __init__(self, *, values: List[Union[str, int, None]], **kwargs):
        super().__init__(**kwargs)
        assert (
            isinstance(values, list) and values
        ), "Must specify at least one enum value!"
        self.values = values

    def _validate_value(self, value: Union[str, int, None]) -> bool:
        return value in self.values


class _ListParameter(_Parameter):
    """list whose items optionally share a single builtin type"""

    TYPE_KEY = "list"
    TYPES = [list]

    def __init__(self, *, item_type: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self._item_type = _builtin_type(item_type)

    def _validate_value(self, value: list) -> bool:
        return self._item_type is None or all(
            isinstance(item, self._item_type) for item in value
        )


class _MapParameter(_Parameter):
    """dict with str keys whose values optionally share a single builtin type"""

    TYPE_KEY = "map"
    TYPES = [dict]

    def __init__(self, *, value_type: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self._value_type = _builtin_type(value_type)

    def _validate_value(self, value: dict) -> bool:
        return all(isinstance(key, str) for key in value) and (
            self._value_type is None
            or all(isinstance(val, self._value_type) for val in value.values())
        )


# pylint: enable=too-few-public-methods

_PARAMETER_TYPES = {
    param_type.TYPE_KEY: param_type
    for param_type in [
        _NumberParameter,
        _IntParameter,
        _StrParameter,
        _BoolParameter,
        _EnumParameter,
        _ListParameter,
        _MapParameter,
    ]
}


def _builtin_type(type_name: Optional[str]) -> Optional[type]:
    if type_name is None:
        return None
    assert hasattr(builtins, type_name), f"Unsupported item type: {type_name}"
    return getattr(builtins, type_name)


def _construct_parameter(param_args: Dict[str, Any]) -> Optional[_Parameter]:
    """Construct a parameter from the args parsed out of a validation file. If
    the type is unknown, None is returned.
    """
    param_args = dict(param_args)
    param_type = param_args.pop("type")
    if not isinstance(param_type, str) or param_type not in _PARAMETER_TYPES:
        return None
    return _PARAMETER_TYPES[param_type](**param_args)


def _parse_validation_config(
    validation_config: dict,
    prefix_parts: Optional[List[str]] = None,
) -> Dict[str, _Parameter]:
    """Recursively parse the validation file into a dict of nested keys
    pointing to parameter validators
    """
    output_dict = {}
    prefix_parts = prefix_parts or []
    for key, val in validation_config.items():
        assert isinstance(key, str), "Only string keys allowed!"
        if not isinstance(val, dict):
            continue
        key_parts = prefix_parts + [key]
        nested_key = constants.NESTED_DICT_DELIM.join(key_parts)
        param = _construct_parameter(val) if "type" in val else None
        if param:
            log.debug3("Found parameter at %s", nested_key)
            output_dict[nested_key] = param
        else:
            log.debug3("Recursing into %s", nested_key)
            output_dict.update(
                _parse_validation_config(val, prefix_parts=key_parts)
            )
    return output_dict
