# nodehealth/services/remediation_client.py
import logging
from kubernetes.client.exceptions import ApiException
from nodehealth.core.config import settings
from nodehealth.core.exceptions import RemediationError
from nodehealth.models.common import ObjectReference
from nodehealth.models.policy import NodeHealthCheck
from nodehealth.models.status import RemediationRef
from nodehealth.services.kubernetes_service import KubernetesService
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

TEMPLATE_SUFFIX = "Template"
NODE_NAME_ANNOTATION = "remediation.medik8s.io/node-name"


def plural_of(kind: str) -> str:
    return kind.lower() + "s"


def remediation_kind(template_kind: str) -> str:
    if template_kind.endswith(TEMPLATE_SUFFIX):
        return template_kind[: -len(TEMPLATE_SUFFIX)]
    return template_kind


def build_remediation(template: ObjectReference, template_obj: Dict[str, Any], node_name: str, owner: NodeHealthCheck) -> Dict[str, Any]:
    """
    Instantiates a remediation resource from its template.

    The resource is named after the node, lives in the template namespace and
    copies spec.template.spec of the template object verbatim.
    """
    spec = ((template_obj.get("spec") or {}).get("template") or {}).get("spec") or {}
    metadata: Dict[str, Any] = {
        "name": node_name,
        "namespace": template.namespace,
        "annotations": {NODE_NAME_ANNOTATION: node_name},
    }
    if owner.uid:
        metadata["ownerReferences"] = [{
            "apiVersion": f"{settings.POLICY_GROUP}/{settings.POLICY_VERSION}",
            "kind": settings.POLICY_KIND,
            "name": owner.name,
            "uid": owner.uid,
            "controller": True,
            "blockOwnerDeletion": False,
        }]
    return {
        "apiVersion": template.api_version,
        "kind": remediation_kind(template.kind),
        "metadata": metadata,
        "spec": dict(spec),
    }


class RemediationClient:
    """Creates, reads and deletes remediation resources through the dynamic custom objects API."""

    def __init__(self, k8s: KubernetesService):
        self.k8s = k8s

    def _api(self):
        if not self.k8s.is_available():
            raise RemediationError("Kubernetes client not available")
        return self.k8s.custom_api

    def get_template(self, template: ObjectReference) -> Optional[Dict[str, Any]]:
        try:
            return self._api().get_namespaced_custom_object(
                group=template.group,
                version=template.version,
                namespace=template.namespace,
                plural=plural_of(template.kind),
                name=template.name,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            logger.error(f"Kubernetes API error fetching template {template.kind} {template.namespace}/{template.name}: {e.status} - {e.reason}")
            raise RemediationError(f"failed to get template {template.name}", {"status": e.status}) from e

    def template_exists(self, template: ObjectReference) -> bool:
        return self.get_template(template) is not None

    def create(self, template: ObjectReference, node_name: str, owner: NodeHealthCheck) -> RemediationRef:
        template_obj = self.get_template(template)
        if template_obj is None:
            raise RemediationError(f"template {template.kind} {template.namespace}/{template.name} not found")
        body = build_remediation(template, template_obj, node_name, owner)
        kind = body["kind"]
        try:
            obj = self._api().create_namespaced_custom_object(
                group=template.group,
                version=template.version,
                namespace=template.namespace,
                plural=plural_of(kind),
                body=body,
            )
            logger.info(f"Created {kind} {template.namespace}/{node_name}")
        except ApiException as e:
            if e.status != 409:
                logger.error(f"Kubernetes API error creating {kind} for node '{node_name}': {e.status} - {e.reason}")
                raise RemediationError(f"failed to create {kind} for node {node_name}", {"status": e.status}) from e
            logger.info(f"{kind} {template.namespace}/{node_name} already exists, adopting it")
            obj = self.get(RemediationRef(api_version=template.api_version, kind=kind, name=node_name, namespace=template.namespace))
            if obj is None:
                raise RemediationError(f"{kind} for node {node_name} vanished while adopting it") from e
        return RemediationRef(
            api_version=template.api_version,
            kind=kind,
            name=node_name,
            namespace=template.namespace,
            uid=(obj.get("metadata") or {}).get("uid"),
        )

    def get(self, ref: RemediationRef) -> Optional[Dict[str, Any]]:
        group, _, version = ref.api_version.rpartition("/")
        try:
            return self._api().get_namespaced_custom_object(
                group=group, version=version, namespace=ref.namespace, plural=plural_of(ref.kind), name=ref.name,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise RemediationError(f"failed to get {ref.kind} {ref.name}", {"status": e.status}) from e

    def delete(self, ref: RemediationRef) -> bool:
        """Removes a remediation resource. A resource that is already gone counts as removed."""
        group, _, version = ref.api_version.rpartition("/")
        try:
            self._api().delete_namespaced_custom_object(
                group=group, version=version, namespace=ref.namespace, plural=plural_of(ref.kind), name=ref.name,
            )
        except ApiException as e:
            if e.status == 404:
                logger.debug(f"{ref.kind} {ref.namespace}/{ref.name} for node {ref.name} already removed")
                return True
            logger.error(f"Failed to remove {ref.kind} {ref.namespace}/{ref.name}: {e.status} - {e.reason}")
            return False
        logger.info(f"Removed {ref.kind} {ref.namespace}/{ref.name} for node {ref.name}")
        return True
