"""
Tests for functions in nsclass.utils
"""

# Standard
import datetime

# Third Party
import pytest

# Local
from nsclass import constants, utils

## merge_configs ###############################################################


def test_merge_configs_nested():
    """Make sure nested dicts are merged rather than replaced"""
    base = {"a": {"b": 1, "c": 2}, "d": 3}
    merged = utils.merge_configs(base, {"a": {"b": 10}, "e": 4})
    assert merged == {"a": {"b": 10, "c": 2}, "d": 3, "e": 4}
    assert merged is base


def test_merge_configs_none_removes():
    """Make sure a None override removes the key like a json merge-patch"""
    merged = utils.merge_configs({"a": 1, "b": {"c": 2}}, {"a": None, "b": {"c": None}})
    assert merged == {"b": {}}


def test_merge_configs_replaces_non_dicts():
    """Make sure lists and scalars are replaced wholesale"""
    merged = utils.merge_configs({"a": [1, 2], "b": {"c": 1}}, {"a": [3], "b": 5})
    assert merged == {"a": [3], "b": 5}


## nested_get ##################################################################


def test_nested_get():
    """Make sure dotted keys walk nested dicts"""
    dct = {"a": {"b": {"c": 1}}}
    assert utils.nested_get(dct, "a.b.c") == 1
    assert utils.nested_get(dct, "a.x.c", "dflt") == "dflt"
    assert utils.nested_get(dct, "a.b.x") is None


def test_nested_get_non_dict_intermediate():
    """Make sure a scalar in the middle of the path is an error"""
    with pytest.raises(TypeError):
        utils.nested_get({"a": 1}, "a.b")


## Manifests ###################################################################


def test_get_class_label():
    """Make sure the class label is read and empty values are treated as unset"""
    labeled = {"metadata": {"labels": {constants.CLASS_LABEL_NAME: "foo"}}}
    empty = {"metadata": {"labels": {constants.CLASS_LABEL_NAME: ""}}}
    assert utils.get_class_label(labeled) == "foo"
    assert utils.get_class_label(empty) is None
    assert utils.get_class_label({"metadata": {"labels": None}}) is None
    assert utils.get_class_label({}) is None


## now_timestamp ###############################################################


def test_now_timestamp_format():
    """Make sure the timestamp parses as an RFC3339 UTC time"""
    timestamp = utils.now_timestamp()
    assert timestamp.endswith("Z")
    parsed = datetime.datetime.strptime(timestamp, "%Y-%m-%dT%H:%M:%SZ")
    now = datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)
    assert abs((now - parsed).total_seconds()) < 60
