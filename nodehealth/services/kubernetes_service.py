# nodehealth/services/kubernetes_service.py
import logging
from kubernetes import client, config, watch
from kubernetes.client.exceptions import ApiException
from nodehealth.core.config import settings
from nodehealth.core.exceptions import StatusConflictError, TransientStoreError
from nodehealth.models.node import Node
from nodehealth.models.policy import NodeHealthCheck
from nodehealth.models.status import NodeHealthCheckStatus
import os
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)

class KubernetesService:
    """Object store access: nodes and NodeHealthCheck policies."""

    def __init__(self):
        self.core_api: Optional[client.CoreV1Api] = None
        self.custom_api: Optional[client.CustomObjectsApi] = None
        self._load_config()

    def _load_config(self):
        """Connects to the cluster the controller runs in, or to the one in the kubeconfig."""
        try:
            # The controller normally runs as a pod next to the nodes it watches
            if os.getenv("KUBERNETES_SERVICE_HOST"):
                config.load_incluster_config()
                source = "service account"
            elif settings.KUBE_CONFIG_PATH and os.path.exists(settings.KUBE_CONFIG_PATH):
                config.load_kube_config(config_file=settings.KUBE_CONFIG_PATH)
                source = settings.KUBE_CONFIG_PATH
            else:
                config.load_kube_config()
                source = "default kubeconfig"
        except config.ConfigException as e:
            logger.warning(f"No cluster connection, node watches and NHC status writes are unavailable: {e}")
            return
        except Exception as e:
            logger.error(f"Failed to set up the cluster connection for NHC reconciliation: {e}", exc_info=True)
            return

        self.core_api = client.CoreV1Api()
        self.custom_api = client.CustomObjectsApi()
        logger.info(f"Node and {settings.POLICY_KIND} APIs ready ({source})")

    def is_available(self) -> bool:
        """True once both the node API and the policy API are connected."""
        return self.core_api is not None and self.custom_api is not None

    def _require(self):
        if not self.is_available():
            raise TransientStoreError("Kubernetes client not available")

    def _policy_coordinates(self) -> Dict[str, str]:
        return {
            "group": settings.POLICY_GROUP,
            "version": settings.POLICY_VERSION,
            "plural": settings.POLICY_PLURAL,
        }

    def list_nodes(self) -> List[Node]:
        self._require()
        try:
            node_list = self.core_api.list_node(timeout_seconds=30)
        except ApiException as e:
            logger.error(f"Kubernetes API error listing nodes: {e.status} - {e.reason}")
            raise TransientStoreError("failed to list nodes", {"status": e.status, "reason": e.reason}) from e
        serialize = self.core_api.api_client.sanitize_for_serialization
        nodes = [Node.from_k8s(serialize(item)) for item in node_list.items]
        logger.debug(f"Listed {len(nodes)} nodes")
        return nodes

    def get_policy(self, name: str) -> Optional[NodeHealthCheck]:
        self._require()
        try:
            obj = self.custom_api.get_cluster_custom_object(name=name, **self._policy_coordinates())
        except ApiException as e:
            if e.status == 404:
                return None
            logger.error(f"Kubernetes API error fetching NHC '{name}': {e.status} - {e.reason}")
            raise TransientStoreError(f"failed to get NHC {name}", {"status": e.status, "reason": e.reason}) from e
        return NodeHealthCheck.from_k8s(obj)

    def list_policies(self) -> List[NodeHealthCheck]:
        self._require()
        try:
            resp = self.custom_api.list_cluster_custom_object(**self._policy_coordinates())
        except ApiException as e:
            logger.error(f"Kubernetes API error listing NHCs: {e.status} - {e.reason}")
            raise TransientStoreError("failed to list NHCs", {"status": e.status, "reason": e.reason}) from e
        policies = []
        for item in resp.get("items", []):
            try:
                policies.append(NodeHealthCheck.from_k8s(item))
            except ValueError as e:
                # pydantic ValidationError, one broken object must not hide the others
                name = item.get("metadata", {}).get("name")
                logger.error(f"Skipping unparsable NHC '{name}': {e}")
        return policies

    def update_status(self, policy: NodeHealthCheck, status: NodeHealthCheckStatus) -> NodeHealthCheck:
        """Replaces the status subresource, guarded by the policy's resourceVersion."""
        self._require()
        body = {
            "apiVersion": f"{settings.POLICY_GROUP}/{settings.POLICY_VERSION}",
            "kind": settings.POLICY_KIND,
            "metadata": {"name": policy.name, "resourceVersion": policy.resource_version},
            "status": status.to_k8s(),
        }
        try:
            obj = self.custom_api.replace_cluster_custom_object_status(
                name=policy.name, body=body, **self._policy_coordinates()
            )
        except ApiException as e:
            if e.status == 409:
                raise StatusConflictError(f"status of NHC {policy.name} was modified concurrently") from e
            logger.error(f"Kubernetes API error updating status of NHC '{policy.name}': {e.status} - {e.reason}")
            raise TransientStoreError(
                f"failed to update status of NHC {policy.name}", {"status": e.status, "reason": e.reason}
            ) from e
        return NodeHealthCheck.from_k8s(obj)

    def watch_nodes(self, timeout_seconds: int) -> Iterator[Dict[str, Any]]:
        """Yields raw watch events ({'type', 'object'}) for nodes until the server closes the stream."""
        self._require()
        w = watch.Watch()
        for event in w.stream(self.core_api.list_node, timeout_seconds=timeout_seconds):
            yield {"type": event["type"], "object": event["raw_object"]}

    def watch_policies(self, timeout_seconds: int) -> Iterator[Dict[str, Any]]:
        self._require()
        w = watch.Watch()
        for event in w.stream(
            self.custom_api.list_cluster_custom_object,
            timeout_seconds=timeout_seconds,
            **self._policy_coordinates(),
        ):
            yield {"type": event["type"], "object": event["object"]}

# Instantiate the service (singleton pattern)
k8s_service = KubernetesService()
