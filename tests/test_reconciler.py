"""
Tests for the NamespaceClassReconciler
"""
# Standard
import threading

# Third Party
import pytest

# Local
from nsclass import constants
from nsclass.exceptions import (
    ClusterError,
    ConflictError,
    NotFoundError,
    ReconcileCanceledError,
)
from nsclass.object_store import DryRunObjectStore
from nsclass.reconciler import NamespaceClassReconciler
from nsclass.test_helpers.helpers import (
    DEFAULT_NETWORK_POLICY_TEMPLATE,
    FIXED_TIMESTAMP,
    SOME_OTHER_NAMESPACE,
    TEST_CLASS_NAME,
    TEST_NAMESPACE,
    FailOnce,
    MockObjectStore,
    library_config,
    make_class,
    make_namespace,
    make_network_policy,
)

## Helpers #####################################################################

NEW_TEMPLATE = {
    "podSelector": {"matchLabels": {"app": "web"}},
    "policyTypes": ["Egress"],
}


def setup_reconciler(resources, policy=constants.CLEANUP_POLICY_ORPHAN, **kwargs):
    store = MockObjectStore(resources=resources, **kwargs)
    reconciler = NamespaceClassReconciler(
        store, child_cleanup_policy=policy, clock=lambda: FIXED_TIMESTAMP
    )
    return store, reconciler


def full_class(**kwargs):
    return make_class(
        network_policy_template=DEFAULT_NETWORK_POLICY_TEMPLATE,
        service_account_template={constants.AUTOMOUNT_TOKEN_FIELD: False},
        **kwargs,
    )


def members(*names, class_name=TEST_CLASS_NAME):
    return [make_namespace(name, class_name=class_name) for name in names]


def get_policy(store, namespace=TEST_NAMESPACE):
    return store.get_obj(
        constants.NETWORK_POLICY_KIND, constants.NETWORK_POLICY_NAME, namespace
    )


def get_service_account(store, namespace=TEST_NAMESPACE):
    return store.get_obj(
        constants.SERVICE_ACCOUNT_KIND, constants.SERVICE_ACCOUNT_NAME, namespace
    )


def get_class(store, name=TEST_CLASS_NAME):
    return store.get_obj(constants.CLASS_KIND, name)


def update_class_spec(store, spec, name=TEST_CLASS_NAME):
    ns_class = get_class(store, name)
    ns_class["spec"] = spec
    DryRunObjectStore.update(store, ns_class)


def remove_class_label(store, namespace):
    ns_obj = store.get_obj(constants.NAMESPACE_KIND, namespace)
    del ns_obj["metadata"]["labels"][constants.CLASS_LABEL_NAME]
    DryRunObjectStore.update(store, ns_obj)


def snapshot_versions(store):
    """Map every object in the store to its resourceVersion"""
    versions = {}
    for resource_type in store.registry:
        _, objects = DryRunObjectStore.filter_objects_current_state(
            store, resource_type.kind
        )
        for obj in objects:
            metadata = obj["metadata"]
            key = (resource_type.kind, metadata.get("namespace"), metadata["name"])
            versions[key] = metadata["resourceVersion"]
    return versions


## Happy Path ##################################################################


def test_reconcile_creates_children():
    """Make sure every member gets one child per template and non-members
    get nothing
    """
    store, reconciler = setup_reconciler(
        [full_class()]
        + members("a", "b")
        + [make_namespace("c"), make_namespace("d", class_name="other-class")]
    )
    result = reconciler.reconcile(TEST_CLASS_NAME)
    assert not result.requeue
    assert result.exception is None

    for namespace in ["a", "b"]:
        policy = get_policy(store, namespace)
        assert policy["spec"] == DEFAULT_NETWORK_POLICY_TEMPLATE
        assert policy["metadata"]["labels"] == {
            constants.CLASS_LABEL_NAME: TEST_CLASS_NAME
        }
        service_account = get_service_account(store, namespace)
        assert service_account[constants.AUTOMOUNT_TOKEN_FIELD] is False
    for namespace in ["c", "d"]:
        assert get_policy(store, namespace) is None
        assert get_service_account(store, namespace) is None

    assert get_class(store)["status"] == {
        constants.OBSERVED_GENERATION_FIELD: 1,
        constants.LAST_APPLIED_TIME_FIELD: FIXED_TIMESTAMP,
    }


def test_reconcile_idempotent():
    """Make sure a second pass over unchanged state changes no versions"""
    store, reconciler = setup_reconciler([full_class()] + members("a", "b"))
    reconciler.reconcile(TEST_CLASS_NAME)
    before = snapshot_versions(store)
    store.reset_counts()

    reconciler.reconcile(TEST_CLASS_NAME)
    assert snapshot_versions(store) == before
    assert store.create.call_count == 0
    assert store.delete.call_count == 0


def test_reconcile_template_change():
    """Make sure a template change is one update of the child and nothing else"""
    store, reconciler = setup_reconciler(
        [make_class(network_policy_template=DEFAULT_NETWORK_POLICY_TEMPLATE)]
        + members(TEST_NAMESPACE)
    )
    reconciler.reconcile(TEST_CLASS_NAME)
    update_class_spec(store, {constants.NETWORK_POLICY_TEMPLATE_FIELD: NEW_TEMPLATE})
    store.reset_counts()

    reconciler.reconcile(TEST_CLASS_NAME)
    assert store.update.call_count == 1
    assert store.create.call_count == 0
    assert store.delete.call_count == 0
    assert get_policy(store)["spec"] == NEW_TEMPLATE
    assert get_class(store)["status"][constants.OBSERVED_GENERATION_FIELD] == 2


def test_reconcile_spec_is_replaced_not_merged():
    """Make sure fields dropped from the template are dropped from the child"""
    store, reconciler = setup_reconciler(
        [make_class(network_policy_template=NEW_TEMPLATE)]
        + members(TEST_NAMESPACE)
        + [make_network_policy()]
    )
    reconciler.reconcile(TEST_CLASS_NAME)
    assert get_policy(store)["spec"] == NEW_TEMPLATE


def test_reconcile_unset_service_account_template():
    """Make sure a nil template never creates a child of its kind"""
    store, reconciler = setup_reconciler(
        [make_class(network_policy_template=DEFAULT_NETWORK_POLICY_TEMPLATE)]
        + members("a", "b")
    )
    reconciler.reconcile(TEST_CLASS_NAME)
    assert store.create.call_count == 2
    for call in store.create.call_args_list:
        assert call.args[0]["kind"] == constants.NETWORK_POLICY_KIND
    assert get_service_account(store, "a") is None
    assert get_service_account(store, "b") is None


def test_reconcile_label_removed():
    """Make sure a namespace that loses its label is no longer reconciled"""
    store, reconciler = setup_reconciler(
        [make_class(network_policy_template=DEFAULT_NETWORK_POLICY_TEMPLATE)]
        + members("a", "b")
    )
    reconciler.reconcile(TEST_CLASS_NAME)
    remove_class_label(store, "a")
    update_class_spec(store, {constants.NETWORK_POLICY_TEMPLATE_FIELD: NEW_TEMPLATE})
    store.reset_counts()

    reconciler.reconcile(TEST_CLASS_NAME)
    assert [
        member["metadata"]["name"]
        for member in reconciler.membership_index.list_members(TEST_CLASS_NAME)
    ] == ["b"]
    assert get_policy(store, "b")["spec"] == NEW_TEMPLATE
    # Orphaned, not updated and not deleted
    assert get_policy(store, "a")["spec"] == DEFAULT_NETWORK_POLICY_TEMPLATE


def test_reconcile_children_are_independent():
    """Make sure two members never share a child object"""
    store, reconciler = setup_reconciler(
        [make_class(network_policy_template=DEFAULT_NETWORK_POLICY_TEMPLATE)]
        + members("a", "b")
    )
    reconciler.reconcile(TEST_CLASS_NAME)

    policy = get_policy(store, "a")
    policy["spec"]["policyTypes"].append("Egress")
    DryRunObjectStore.update(store, policy)

    assert get_policy(store, "b")["spec"] == DEFAULT_NETWORK_POLICY_TEMPLATE
    assert (
        get_class(store)["spec"][constants.NETWORK_POLICY_TEMPLATE_FIELD]
        == DEFAULT_NETWORK_POLICY_TEMPLATE
    )


def test_reconcile_reverts_drift():
    """Make sure a hand edited child is put back on the next pass"""
    store, reconciler = setup_reconciler(
        [make_class(network_policy_template=DEFAULT_NETWORK_POLICY_TEMPLATE)]
        + members(TEST_NAMESPACE)
    )
    reconciler.reconcile(TEST_CLASS_NAME)
    policy = get_policy(store)
    policy["spec"] = NEW_TEMPLATE
    DryRunObjectStore.update(store, policy)

    reconciler.reconcile(TEST_CLASS_NAME)
    assert get_policy(store)["spec"] == DEFAULT_NETWORK_POLICY_TEMPLATE


def test_reconcile_stale_label():
    """Make sure a child labeled for another class is claimed and only the
    class label changes
    """
    policy = make_network_policy(class_name="other-class")
    policy["metadata"]["labels"]["team"] = "blue"
    policy["metadata"]["annotations"] = {"note": "keep"}
    store, reconciler = setup_reconciler(
        [make_class(network_policy_template=NEW_TEMPLATE)]
        + members(TEST_NAMESPACE)
        + [policy]
    )
    reconciler.reconcile(TEST_CLASS_NAME)
    current = get_policy(store)
    assert current["metadata"]["labels"] == {
        constants.CLASS_LABEL_NAME: TEST_CLASS_NAME,
        "team": "blue",
    }
    assert current["metadata"]["annotations"] == {"note": "keep"}
    assert current["spec"] == NEW_TEMPLATE


def test_reconcile_service_account_automount_unset():
    """Make sure an automount flag dropped from the template is dropped from
    the child
    """
    store, reconciler = setup_reconciler(
        [make_class(service_account_template={constants.AUTOMOUNT_TOKEN_FIELD: True})]
        + members(TEST_NAMESPACE)
    )
    reconciler.reconcile(TEST_CLASS_NAME)
    assert get_service_account(store)[constants.AUTOMOUNT_TOKEN_FIELD] is True

    update_class_spec(store, {constants.SERVICE_ACCOUNT_TEMPLATE_FIELD: {"x": "y"}})
    reconciler.reconcile(TEST_CLASS_NAME)
    assert constants.AUTOMOUNT_TOKEN_FIELD not in get_service_account(store)


def test_reconcile_no_members():
    store, reconciler = setup_reconciler([full_class()])
    assert not reconciler.reconcile(TEST_CLASS_NAME).requeue
    assert store.create.call_count == 0
    assert get_class(store)["status"][constants.OBSERVED_GENERATION_FIELD] == 1


## Status ######################################################################


def test_reconcile_observed_generation_never_regresses():
    store, reconciler = setup_reconciler([full_class()] + members("a"))
    DryRunObjectStore.patch_status(
        store,
        constants.CLASS_KIND,
        TEST_CLASS_NAME,
        None,
        {constants.OBSERVED_GENERATION_FIELD: 5},
    )
    reconciler.reconcile(TEST_CLASS_NAME)
    assert get_class(store)["status"][constants.OBSERVED_GENERATION_FIELD] == 5


def test_reconcile_status_not_found_is_success():
    """Make sure a class deleted before the status write is not an error"""
    store, reconciler = setup_reconciler(
        [full_class()] + members("a"), patch_status_fail=NotFoundError
    )
    result = reconciler.reconcile(TEST_CLASS_NAME)
    assert not result.requeue
    assert store.patch_status.call_count == 1


def test_reconcile_status_only_after_full_pass():
    """Make sure a failure part way leaves earlier work and no status"""
    store, reconciler = setup_reconciler(
        [make_class(network_policy_template=DEFAULT_NETWORK_POLICY_TEMPLATE)]
        + members("a", "b"),
        create_fail=FailOnce(ClusterError, fail_number=2),
    )
    with pytest.raises(ClusterError):
        reconciler.reconcile(TEST_CLASS_NAME)
    assert get_policy(store, "a") is not None
    assert get_policy(store, "b") is None
    assert store.patch_status.call_count == 0
    assert "status" not in get_class(store)


## Errors ######################################################################


def test_reconcile_class_not_found():
    """Make sure a missing class ends the pass without a retry"""
    store, reconciler = setup_reconciler(members("a"))
    result = reconciler.reconcile(TEST_CLASS_NAME)
    assert not result.requeue
    assert store.create.call_count == 0
    assert store.patch_status.call_count == 0


def test_reconcile_fetch_failure():
    _, reconciler = setup_reconciler([full_class()], get_state_fail=True)
    with pytest.raises(ClusterError):
        reconciler.reconcile(TEST_CLASS_NAME)


def test_reconcile_list_failure():
    _, reconciler = setup_reconciler([full_class()], filter_fail=True)
    with pytest.raises(ClusterError):
        reconciler.reconcile(TEST_CLASS_NAME)


def test_reconcile_conflict_propagates():
    """Make sure a stale write fails the pass so it is retried"""
    store, reconciler = setup_reconciler(
        [make_class(network_policy_template=NEW_TEMPLATE)]
        + members(TEST_NAMESPACE)
        + [make_network_policy()],
        update_fail=ConflictError,
    )
    with pytest.raises(ConflictError):
        reconciler.reconcile(TEST_CLASS_NAME)
    assert store.patch_status.call_count == 0


def test_reconcile_namespace_vanished():
    """Make sure a namespace deleted mid-pass is skipped"""
    store, reconciler = setup_reconciler(
        [full_class()] + members("a"), create_fail=NotFoundError
    )
    result = reconciler.reconcile(TEST_CLASS_NAME)
    assert not result.requeue
    assert store.create.call_count == 2
    assert get_class(store)["status"][constants.OBSERVED_GENERATION_FIELD] == 1


def test_reconcile_canceled():
    """Make sure a canceled pass makes no writes"""
    store, reconciler = setup_reconciler([full_class()] + members("a"))
    cancel_event = threading.Event()
    cancel_event.set()
    with pytest.raises(ReconcileCanceledError):
        reconciler.reconcile(TEST_CLASS_NAME, cancel_event)
    assert store.create.call_count == 0
    assert store.patch_status.call_count == 0


## Safe Reconcile ##############################################################


def test_safe_reconcile_success():
    _, reconciler = setup_reconciler([full_class()] + members("a"))
    result = reconciler.safe_reconcile(TEST_CLASS_NAME)
    assert not result.requeue
    assert result.exception is None


@pytest.mark.parametrize(
    "store_kwargs",
    [
        {"update_fail": ConflictError},
        {"get_state_fail": ValueError("unexpected")},
        {"create_fail": ClusterError},
    ],
)
def test_safe_reconcile_failure(store_kwargs):
    """Make sure failures come back as requeue results instead of raising"""
    _, reconciler = setup_reconciler(
        [make_class(network_policy_template=NEW_TEMPLATE)]
        + members(TEST_NAMESPACE, "a")
        + [make_network_policy()],
        **store_kwargs,
    )
    result = reconciler.safe_reconcile(TEST_CLASS_NAME)
    assert result.requeue
    assert result.exception is not None


def test_safe_reconcile_canceled():
    _, reconciler = setup_reconciler([full_class()])
    cancel_event = threading.Event()
    cancel_event.set()
    result = reconciler.safe_reconcile(TEST_CLASS_NAME, cancel_event)
    assert result.requeue
    assert isinstance(result.exception, ReconcileCanceledError)


## Cleanup Policy ##############################################################


def test_cleanup_policy_from_config():
    with library_config(child_cleanup_policy=constants.CLEANUP_POLICY_CASCADE):
        reconciler = NamespaceClassReconciler(MockObjectStore())
    assert reconciler.cascade


def test_cleanup_policy_invalid():
    with pytest.raises(AssertionError):
        NamespaceClassReconciler(MockObjectStore(), child_cleanup_policy="delete")


def test_orphan_does_not_add_finalizer():
    store, reconciler = setup_reconciler([full_class()] + members("a"))
    reconciler.reconcile(TEST_CLASS_NAME)
    assert not get_class(store)["metadata"].get("finalizers")


def test_cascade_adds_finalizer():
    store, reconciler = setup_reconciler(
        [full_class()] + members("a"), policy=constants.CLEANUP_POLICY_CASCADE
    )
    reconciler.reconcile(TEST_CLASS_NAME)
    assert get_class(store)["metadata"]["finalizers"] == [
        constants.CLASS_FINALIZER_NAME
    ]


def test_cascade_idempotent():
    store, reconciler = setup_reconciler(
        [full_class()] + members("a", "b"), policy=constants.CLEANUP_POLICY_CASCADE
    )
    reconciler.reconcile(TEST_CLASS_NAME)
    before = snapshot_versions(store)
    reconciler.reconcile(TEST_CLASS_NAME)
    assert snapshot_versions(store) == before


def test_cascade_prunes_unset_template():
    """Make sure clearing a template removes the children it made"""
    store, reconciler = setup_reconciler(
        [full_class()] + members("a"), policy=constants.CLEANUP_POLICY_CASCADE
    )
    reconciler.reconcile(TEST_CLASS_NAME)
    assert get_service_account(store, "a") is not None

    update_class_spec(
        store,
        {constants.NETWORK_POLICY_TEMPLATE_FIELD: DEFAULT_NETWORK_POLICY_TEMPLATE},
    )
    reconciler.reconcile(TEST_CLASS_NAME)
    assert get_service_account(store, "a") is None
    assert get_policy(store, "a") is not None


def test_cascade_does_not_prune_foreign_child():
    """Make sure an unset template never deletes another class's child"""
    store, reconciler = setup_reconciler(
        [make_class(service_account_template={constants.AUTOMOUNT_TOKEN_FIELD: True})]
        + members("a")
        + [make_network_policy(namespace="a", class_name="other-class")],
        policy=constants.CLEANUP_POLICY_CASCADE,
    )
    reconciler.reconcile(TEST_CLASS_NAME)
    assert get_policy(store, "a") is not None


def test_cascade_prunes_former_members():
    """Make sure a namespace that leaves the class loses its children"""
    store, reconciler = setup_reconciler(
        [full_class()] + members("a", "b"), policy=constants.CLEANUP_POLICY_CASCADE
    )
    reconciler.reconcile(TEST_CLASS_NAME)
    remove_class_label(store, "a")
    reconciler.reconcile(TEST_CLASS_NAME)

    assert get_policy(store, "a") is None
    assert get_service_account(store, "a") is None
    assert get_policy(store, "b") is not None
    assert get_service_account(store, "b") is not None


def test_cascade_keeps_other_labeled_objects():
    """Make sure only the fixed child names are ever pruned"""
    store, reconciler = setup_reconciler(
        [full_class()]
        + members("a")
        + [
            make_namespace(SOME_OTHER_NAMESPACE),
            make_network_policy(namespace=SOME_OTHER_NAMESPACE, name="custom"),
        ],
        policy=constants.CLEANUP_POLICY_CASCADE,
    )
    reconciler.reconcile(TEST_CLASS_NAME)
    assert store.has_obj(
        constants.NETWORK_POLICY_KIND, "custom", SOME_OTHER_NAMESPACE
    )


def test_cascade_finalize():
    """Make sure deleting a class removes its children and then the class"""
    store, reconciler = setup_reconciler(
        [full_class()] + members("a", "b"), policy=constants.CLEANUP_POLICY_CASCADE
    )
    reconciler.reconcile(TEST_CLASS_NAME)
    DryRunObjectStore.delete(store, constants.CLASS_KIND, TEST_CLASS_NAME)
    assert get_class(store)["metadata"]["deletionTimestamp"]

    result = reconciler.reconcile(TEST_CLASS_NAME)
    assert not result.requeue
    assert get_class(store) is None
    for namespace in ["a", "b"]:
        assert get_policy(store, namespace) is None
        assert get_service_account(store, namespace) is None


def test_orphan_finalize_releases_class():
    """Make sure switching to orphan never blocks a class deletion and leaves
    the children in place
    """
    store, cascade_reconciler = setup_reconciler(
        [full_class()] + members("a"), policy=constants.CLEANUP_POLICY_CASCADE
    )
    cascade_reconciler.reconcile(TEST_CLASS_NAME)
    DryRunObjectStore.delete(store, constants.CLASS_KIND, TEST_CLASS_NAME)

    orphan_reconciler = NamespaceClassReconciler(
        store,
        child_cleanup_policy=constants.CLEANUP_POLICY_ORPHAN,
        clock=lambda: FIXED_TIMESTAMP,
    )
    orphan_reconciler.reconcile(TEST_CLASS_NAME)
    assert get_class(store) is None
    assert get_policy(store, "a") is not None
    assert get_service_account(store, "a") is not None
