"""
The ComponentReconciler reconciles every object rendered for one component,
removes the objects the component no longer renders and rolls the outcome up
into the status of the component.
"""

# Standard
from typing import List, Optional, Set, Tuple
import copy

# First Party
import aconfig
import alog

# Local
from .cluster import ClusterClientBase
from .constants import PROPAGATION_FOREGROUND
from .exceptions import aggregate, is_gone, is_not_found
from .hooks import HookRegistry
from .manifest import Manifest, decode_manifest
from .object_reconciler import ObjectReconciler
from .status import (
    ComponentStatus,
    ConditionStatus,
    ConditionType,
    ResourceKey,
    Status,
    update_delete_status,
    update_reconcile_status,
)

log = alog.use_channel("CMPNT")


class ComponentReconciler:
    """Reconciles the manifests of single components of a control plane"""

    def __init__(
        self,
        client: ClusterClientBase,
        instance: dict,
        hooks: Optional[HookRegistry] = None,
        object_reconciler: Optional[ObjectReconciler] = None,
        reconcile_config: Optional[aconfig.Config] = None,
    ):
        """
        Args:
            client:  ClusterClientBase
                The client used to delete objects that are no longer rendered
            instance:  dict
                The control plane resource
            hooks:  Optional[HookRegistry]
                The hooks to run around deletes and after install
            object_reconciler:  Optional[ObjectReconciler]
                The reconciler for single objects. Defaults to one sharing the
                client and hooks.
            reconcile_config:  Optional[aconfig.Config]
                Library config override passed to the default object reconciler
        """
        self.client = client
        self.instance = instance
        self.hooks = hooks or HookRegistry()
        self.object_reconciler = object_reconciler or ObjectReconciler(
            client, instance, hooks=self.hooks, reconcile_config=reconcile_config
        )

    @alog.logged_function(log.debug2)
    def reconcile_component(
        self,
        name: str,
        manifests: List[Manifest],
        old_status: Optional[ComponentStatus],
    ) -> Tuple[ComponentStatus, Optional[Exception]]:
        """Reconcile all objects of a component. An empty list of manifests
        tears the component down.

        Args:
            name:  str
                The name of the component
            manifests:  List[Manifest]
                The manifests rendered for the component in this pass
            old_status:  Optional[ComponentStatus]
                The status of the component from the previous pass

        Returns:
            new_status:  ComponentStatus
                The status of the component after this pass. It is valid even
                when an error is returned.
            error:  Optional[Exception]
                The aggregate of all errors hit while reconciling
        """
        new_status = ComponentStatus(resource=name)
        if old_status is not None:
            new_status.conditions = copy.deepcopy(old_status.conditions)
            new_status.foreign_conditions = copy.deepcopy(
                old_status.foreign_conditions
            )
            new_status.observed_generation = old_status.observed_generation

        install_pass = bool(manifests)
        if install_pass:
            log.info("Reconciling component [%s]", name)
        else:
            log.info("Deleting component [%s]", name)

        resources_processed: Set[ResourceKey] = set()
        errors = []
        for manifest in manifests:
            errors.extend(
                self._process_manifest(
                    manifest, resources_processed, old_status, new_status
                )
            )
        errors.extend(self._prune(old_status, resources_processed, new_status))

        error = aggregate(errors)
        if install_pass:
            update_reconcile_status(new_status, error)
        else:
            update_delete_status(new_status, error)
        new_status.observed_generation = (self.instance.get("metadata") or {}).get(
            "generation", new_status.observed_generation
        )

        # Post-install hooks run after every install pass, failed ones included
        if install_pass:
            try:
                self.hooks.post_install(name, new_status, self.instance)
            except Exception as err:  # pylint: disable=broad-except
                log.warning("Post-install hooks failed for [%s]: %s", name, err)

        log.debug("Component [%s] complete. Error: %s", name, error)
        return new_status, error

    ## Implementation ##########################################################

    def _process_manifest(
        self,
        manifest: Manifest,
        resources_processed: Set[ResourceKey],
        old_status: Optional[ComponentStatus],
        new_status: ComponentStatus,
    ) -> List[Exception]:
        if not manifest.is_object_manifest:
            log.debug2("Skipping manifest [%s]", manifest.name)
            return []

        log.debug2("Processing manifest [%s]", manifest.name)
        objects, errors = decode_manifest(manifest)
        for obj in objects:
            try:
                self.object_reconciler.reconcile_object(
                    obj, resources_processed, old_status, new_status
                )
            except Exception as err:  # pylint: disable=broad-except
                errors.append(err)
        return errors

    def _prune(
        self,
        old_status: Optional[ComponentStatus],
        resources_processed: Set[ResourceKey],
        new_status: ComponentStatus,
    ) -> List[Exception]:
        """Delete the previously tracked objects that were not rendered in this
        pass, in reverse creation order. The statuses of the deleted objects are
        kept (marked deleted) in their original order after the rendered ones.
        """
        if old_status is None:
            return []

        errors = []
        kept = []
        for old_resource in reversed(old_status.resources):
            key = old_resource.resource
            if key is None or key in resources_processed:
                continue
            installed = old_resource.get_condition(ConditionType.INSTALLED)
            if installed.status == ConditionStatus.FALSE:
                log.debug3("Dropping status of removed resource %s", key)
                continue

            status = copy.deepcopy(old_resource)
            error = self._delete(key, status)
            if error is not None:
                errors.append(error)
            kept.append(status)

        new_status.resources.extend(reversed(kept))
        return errors

    def _delete(self, key: ResourceKey, status: Status) -> Optional[Exception]:
        log.info("Deleting %s", key)
        error = None
        try:
            self.client.delete_by_key(key, propagation_policy=PROPAGATION_FOREGROUND)
        except Exception as err:  # pylint: disable=broad-except
            error = err

        if error is not None and not (is_not_found(error) or is_gone(error)):
            log.warning("Failed to delete %s: %s", key, error)
            update_delete_status(status, error)
            return error

        status.observed_generation = 0
        update_delete_status(status)
        try:
            self.hooks.post_delete(key.to_placeholder(), self.instance)
        except Exception as err:  # pylint: disable=broad-except
            log.warning("Post-delete hook failed for %s: %s", key, err)
        return None
