"""
This ObjectStore is responsible for delegating cluster operations to the
openshift library. It is the one that will be used when the operator is running
in the cluster or outside the cluster making live changes.
"""
# Standard
from typing import Iterator, Optional
import threading

# Third Party
from kubernetes import client
from kubernetes.watch import Watch
from openshift.dynamic import DynamicClient
from openshift.dynamic.exceptions import ConflictError as DynamicConflictError
from openshift.dynamic.exceptions import DynamicApiError, ForbiddenError
from openshift.dynamic.exceptions import NotFoundError as DynamicNotFoundError
from openshift.dynamic.exceptions import ResourceNotFoundError
from openshift.dynamic.resource import Resource
import kubernetes
import urllib3

# First Party
import alog

# Local
from .. import constants
from ..exceptions import (
    AlreadyExistsError,
    ClusterError,
    ConflictError,
    NotFoundError,
    assert_cluster,
)
from ..managed_object import ManagedObject
from ..registry import ResourceRegistry
from .base import ObjectStoreBase
from .kube_event import KubeEventType, KubeWatchEvent

log = alog.use_channel("KUBE")

# See this document for value reasonings
# https://github.com/kubernetes-client/python/blob/master/examples/watch/timeout-settings.md
SERVER_WATCH_TIMEOUT = 3600
CLIENT_WATCH_TIMEOUT = 30

MERGE_PATCH_CONTENT_TYPE = "application/merge-patch+json"


class KubeObjectStore(ObjectStoreBase):
    """This ObjectStore uses the openshift DynamicClient to interact with the
    cluster
    """

    def __init__(
        self,
        registry: ResourceRegistry,
        dynamic_client: Optional[DynamicClient] = None,
    ):
        """
        Args:
            registry:  ResourceRegistry
                Metadata for the kinds this store may touch
            dynamic_client:  Optional[DynamicClient]
                Client to use. If not given, one is created lazily from the
                in-cluster config or the local kubeconfig.
        """
        super().__init__(registry)
        self._client = dynamic_client

    @property
    def client(self) -> DynamicClient:
        """Lazy property access to the client"""
        if self._client is None:
            self._client = self._setup_client()
        return self._client

    ## Reads ###################################################################

    def get_object_current_state(self, kind, name, namespace=None):
        resource_handle = self._get_resource_handle(kind)
        if resource_handle is None:
            return False, None

        try:
            resource = resource_handle.get(name=name, namespace=namespace)
        except ForbiddenError:
            log.debug(
                "Fetching objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, None
        except DynamicNotFoundError:
            log.debug(
                "No object named [%s/%s] found in namespace [%s]", kind, name, namespace
            )
            return True, None
        except DynamicApiError as err:
            log.warning("Failed to fetch [%s/%s]: %s", kind, name, err)
            return False, None

        return True, resource.to_dict()

    def filter_objects_current_state(self, kind, namespace=None, label_selector=None):
        resource_handle = self._get_resource_handle(kind)
        if resource_handle is None:
            return False, []

        try:
            list_obj = resource_handle.get(
                label_selector=label_selector,
                namespace=namespace,
            )
        except ForbiddenError:
            log.debug(
                "Listing objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, []
        except DynamicNotFoundError:
            log.debug(
                "No objects of kind [%s] found in namespace [%s]", kind, namespace
            )
            return True, []
        except DynamicApiError as err:
            log.warning("Failed to list [%s] in [%s]: %s", kind, namespace, err)
            return False, []

        return True, list_obj.to_dict().get("items", [])

    ## Writes ##################################################################

    def create(self, resource_definition):
        kind, name, namespace = self._get_resource_identifiers(resource_definition)
        resource_handle = self._require_resource_handle(kind)
        log.debug2("Creating [%s/%s] in %s", kind, name, namespace)
        try:
            return resource_handle.create(
                body=resource_definition,
                namespace=namespace,
                field_manager=constants.FIELD_MANAGER,
            ).to_dict()
        except DynamicConflictError as err:
            raise AlreadyExistsError(f"{kind} {name} already exists: {err}") from err
        except DynamicNotFoundError as err:
            raise NotFoundError(f"Cannot create {kind} {name}: {err}") from err
        except DynamicApiError as err:
            raise ClusterError(f"Failed to create {kind} {name}: {err}") from err

    def update(self, resource_definition):
        kind, name, namespace = self._get_resource_identifiers(resource_definition)
        resource_handle = self._require_resource_handle(kind)
        log.debug2(
            "Replacing [%s/%s] in %s at resourceVersion %s",
            kind,
            name,
            namespace,
            resource_definition.get("metadata", {}).get("resourceVersion"),
        )
        try:
            return resource_handle.replace(
                body=resource_definition,
                namespace=namespace,
                field_manager=constants.FIELD_MANAGER,
            ).to_dict()
        except DynamicConflictError as err:
            raise ConflictError(f"Conflict updating {kind} {name}: {err}") from err
        except DynamicNotFoundError as err:
            raise NotFoundError(f"Cannot update {kind} {name}: {err}") from err
        except DynamicApiError as err:
            raise ClusterError(f"Failed to update {kind} {name}: {err}") from err

    def patch_status(self, kind, name, namespace, status_patch):
        resource_handle = self._require_resource_handle(kind)
        log.debug2("Patching status of [%s/%s] in %s", kind, name, namespace)
        try:
            return resource_handle.status.patch(
                body={"status": status_patch},
                name=name,
                namespace=namespace,
                content_type=MERGE_PATCH_CONTENT_TYPE,
                field_manager=constants.FIELD_MANAGER,
            ).to_dict()
        except DynamicNotFoundError as err:
            raise NotFoundError(f"Cannot patch status of {kind} {name}: {err}") from err
        except DynamicConflictError as err:
            raise ConflictError(f"Conflict patching {kind} {name}: {err}") from err
        except DynamicApiError as err:
            raise ClusterError(f"Failed to patch {kind} {name}: {err}") from err

    def delete(self, kind, name, namespace=None):
        resource_handle = self._require_resource_handle(kind)
        log.debug2("Deleting [%s/%s] from %s", kind, name, namespace)
        try:
            resource_handle.delete(name=name, namespace=namespace)
        except DynamicNotFoundError as err:
            log.debug2("Valid error caught when deleting [%s/%s]: %s", kind, name, err)
            return False
        except DynamicApiError as err:
            raise ClusterError(f"Failed to delete {kind} {name}: {err}") from err
        return True

    ## Watches #################################################################

    def watch_objects(
        self,
        kind: str,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> Iterator[KubeWatchEvent]:
        stop_event = stop_event or threading.Event()
        resource_handle = self._require_resource_handle(kind)
        resource_version = None

        while not stop_event.is_set():
            watch_manager = Watch()
            try:
                for event_obj in watch_manager.stream(
                    resource_handle.get,
                    resource_version=resource_version,
                    namespace=namespace,
                    label_selector=label_selector,
                    serialize=False,
                    timeout_seconds=SERVER_WATCH_TIMEOUT,
                    _request_timeout=CLIENT_WATCH_TIMEOUT,
                ):
                    if stop_event.is_set():
                        watch_manager.stop()
                        break
                    event_type = KubeEventType(event_obj["type"])
                    event_resource = ManagedObject(event_obj["object"])
                    resource_version = event_resource.resource_version
                    yield KubeWatchEvent(event_type, event_resource)
            except client.exceptions.ApiException as exception:
                if exception.status == 410:
                    log.debug2("Resource age expired, restarting watch %s", kind)
                    resource_version = None
                else:
                    log.info("Unknown ApiException received, re-raising")
                    raise ClusterError(f"Watch of {kind} failed: {exception}") from exception
            except urllib3.exceptions.ReadTimeoutError:
                log.debug4("Watch Socket closed, restarting watch %s", kind)
            except urllib3.exceptions.ProtocolError:
                log.debug2("Invalid Chunk from server, restarting watch %s", kind)

        log.debug("Watch of %s stopped", kind)

    ## Implementation Helpers ##################################################

    @staticmethod
    def _setup_client() -> DynamicClient:
        """Create a DynamicClient that will work based on where the operator is
        running
        """
        # Try in-cluster config
        try:
            log.debug2("Running with in-cluster config")
            kube_config = kubernetes.client.Configuration()
            kubernetes.config.load_incluster_config(client_configuration=kube_config)
            api_client = kubernetes.client.ApiClient(kube_config)
            return DynamicClient(api_client)

        # Fall back to out-of-cluster config
        except kubernetes.config.ConfigException:
            log.debug2("Running with out-of-cluster config")
            return DynamicClient(kubernetes.config.new_client_from_config())

    def _get_resource_handle(self, kind: str) -> Optional[Resource]:
        """Get the openshift resource handle for a registered kind"""
        resource_type = self.resource_type(kind)
        try:
            resource_handle = self.client.resources.get(
                kind=kind, api_version=resource_type.api_version
            )
        except ResourceNotFoundError:
            log.debug("Kind [%s] is not served by the cluster", resource_type)
            return None
        resource_handle.namespaced = resource_type.namespaced
        return resource_handle

    def _require_resource_handle(self, kind: str) -> Resource:
        resource_handle = self._get_resource_handle(kind)
        assert_cluster(
            resource_handle is not None,
            f"Failed to fetch resource handle for {self.resource_type(kind)}",
        )
        return resource_handle

    def _get_resource_identifiers(self, resource_definition):
        kind = resource_definition.get("kind")
        metadata = resource_definition.get("metadata", {})
        name = metadata.get("name")
        namespace = metadata.get("namespace")
        assert_cluster(kind and name, "Resource is missing kind or name")
        if not self.resource_type(kind).namespaced:
            namespace = None
        return kind, name, namespace
