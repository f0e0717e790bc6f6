"""
Tests for the json log formatter
"""
# Standard
import json
import logging

# Local
from nsclass.log_format import NsClassJsonFormatter
from nsclass.managed_object import ManagedObject
from nsclass.test_helpers.helpers import TEST_CLASS_NAME, TEST_NAMESPACE, make_network_policy


def make_record(**extra):
    record = logging.LogRecord(
        name="TEST",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="hello %s",
        args=("world",),
        exc_info=None,
    )
    for key, val in extra.items():
        setattr(record, key, val)
    return record


def test_formatter_adds_resource_fields():
    """Make sure the identity of an attached manifest lands in the json"""
    policy = make_network_policy()
    policy["metadata"]["resourceVersion"] = "7"
    logged = json.loads(
        NsClassJsonFormatter().format(
            make_record(
                resource=policy,
                class_name=TEST_CLASS_NAME,
                reconciliation_id="abc",
            )
        )
    )
    assert logged["kind"] == "NetworkPolicy"
    assert logged["resourceName"] == policy["metadata"]["name"]
    assert logged["resourceNamespace"] == TEST_NAMESPACE
    assert logged["resourceVersion"] == "7"
    assert logged["className"] == TEST_CLASS_NAME
    assert logged["reconciliationId"] == "abc"


def test_formatter_accepts_managed_object():
    logged = json.loads(
        NsClassJsonFormatter().format(
            make_record(resource=ManagedObject(make_network_policy()))
        )
    )
    assert logged["kind"] == "NetworkPolicy"
    assert logged["resourceNamespace"] == TEST_NAMESPACE


def test_formatter_without_extras():
    logged = json.loads(NsClassJsonFormatter().format(make_record()))
    assert "kind" not in logged
    assert "className" not in logged
    assert "reconciliationId" not in logged
