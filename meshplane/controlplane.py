"""
The ControlPlaneReconciler drives a whole control plane resource: it guards the
installation with a finalizer, reconciles every rendered component in priority
order and tears everything down when the resource is deleted.
"""

# Standard
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import copy
import datetime

# First Party
import aconfig
import alog

# Local
from . import config
from .cluster import ClusterClientBase
from .component_reconciler import ComponentReconciler
from .exceptions import ClusterApiError, aggregate, is_conflict, is_gone, is_not_found
from .hooks import HookRegistry
from .manifest import Manifest, ManifestRenderer
from .status import (
    ConditionType,
    ControlPlaneStatus,
    status_changed,
    update_delete_status,
    update_reconcile_status,
)
from .utils import add_finalizer, get_finalizers, is_being_deleted, remove_finalizer

log = alog.use_channel("CTLPL")


## Data models #################################################################


@dataclass
class RequeueParams:
    """RequeueParams holds parameters for requeue request"""

    requeue_after: datetime.timedelta = field(
        default_factory=lambda: datetime.timedelta(
            seconds=float(config.requeue_after_seconds)
        )
    )


@dataclass
class ReconciliationResult:
    """ReconciliationResult is the result of a reconciliation pass"""

    # Flag to control requeue of current reconcile request
    requeue: bool
    # Parameters for requeue request
    requeue_params: RequeueParams = field(default_factory=RequeueParams)
    # The error that caused the pass to fail, if any
    exception: Optional[Exception] = None


## ControlPlaneReconciler ######################################################


class ControlPlaneReconciler:
    """Reconciles control plane resources against the cluster"""

    def __init__(
        self,
        client: ClusterClientBase,
        renderer: ManifestRenderer,
        hooks: Optional[HookRegistry] = None,
        component_order: Optional[List[str]] = None,
        reconcile_config: Optional[aconfig.Config] = None,
    ):
        """
        Args:
            client:  ClusterClientBase
                The client used for all cluster operations
            renderer:  ManifestRenderer
                Renders the manifests of a control plane instance
            hooks:  Optional[HookRegistry]
                The hooks run by the object and component reconcilers
            component_order:  Optional[List[str]]
                Components reconciled first, in this order. Defaults to
                config.component_order.
            reconcile_config:  Optional[aconfig.Config]
                Library config override
        """
        self.client = client
        self.renderer = renderer
        self.hooks = hooks or HookRegistry()
        self.config = reconcile_config or config
        self.component_order = list(
            component_order
            if component_order is not None
            else self.config.component_order or []
        )

    ## Public ##################################################################

    @alog.logged_function(log.info)
    @alog.timed_function(log.info, "Reconcile finished in: ")
    def reconcile(self, instance: dict) -> ReconciliationResult:
        """Run one reconcile pass for a control plane

        Args:
            instance:  dict
                The current state of the control plane resource

        Returns:
            result:  ReconciliationResult
                Whether to requeue and the error of the pass, if any
        """
        finalizer = self.config.finalizer_name
        if is_being_deleted(instance):
            if finalizer not in get_finalizers(instance):
                log.info("Control plane deleted and finalized. Nothing to do")
                return ReconciliationResult(requeue=False)
            try:
                self.delete(instance)
            except Exception as err:  # pylint: disable=broad-except
                log.warning("Deletion of control plane failed: %s", err)
                return ReconciliationResult(requeue=True, exception=err)
            return ReconciliationResult(requeue=False)

        if finalizer not in get_finalizers(instance):
            return self._add_finalizer(instance)

        status = ControlPlaneStatus.from_dict(instance.get("status"))
        generation = (instance.get("metadata") or {}).get("generation", 0)
        # Reconciled is checked along with Installed so that a pass that failed
        # after the install is retried at the same generation
        if (
            generation == status.observed_generation
            and status.is_true(ConditionType.INSTALLED)
            and status.is_true(ConditionType.RECONCILED)
        ):
            log.info("Control plane is up to date at generation %s", generation)
            return ReconciliationResult(requeue=False)

        error = self.install(instance, status)
        return ReconciliationResult(requeue=error is not None, exception=error)

    def install(
        self, instance: dict, old_status: ControlPlaneStatus
    ) -> Optional[Exception]:
        """Render and reconcile every component of a control plane and persist
        the resulting status

        Returns:
            error:  Optional[Exception]
                The aggregate error of the pass
        """
        generation = (instance.get("metadata") or {}).get("generation", 0)
        new_status = self._carry_over(old_status)

        try:
            renderings = self.renderer.render(instance)
        except Exception as err:  # pylint: disable=broad-except
            log.warning("Failed to render manifests: %s", err)
            new_status.component_status = copy.deepcopy(old_status.component_status)
            update_reconcile_status(new_status, err)
            self._persist_status(instance, new_status)
            return err

        reconciler = ComponentReconciler(
            self.client, instance, hooks=self.hooks, reconcile_config=self.config
        )
        errors = []
        for name, manifests in self.order_components(renderings, old_status):
            component_status, component_error = reconciler.reconcile_component(
                name, manifests, old_status.find_component_by_name(name)
            )
            if component_error is not None:
                log.warning("Component [%s] failed: %s", name, component_error)
                errors.append(component_error)
            if manifests or component_status.resources:
                new_status.component_status.append(component_status)
            else:
                log.debug2("Component [%s] fully removed", name)

        error = aggregate(errors)
        new_status.observed_generation = generation
        update_reconcile_status(new_status, error)
        _, status_error = self._persist_status(instance, new_status)
        if error is None:
            error = status_error
        return error

    @alog.logged_function(log.info)
    def delete(self, instance: dict):
        """Delete everything installed for a control plane, in reverse
        installation order, and then release the finalizer. Objects that fail
        to delete do not stop the finalizer from being removed.

        Args:
            instance:  dict
                The control plane resource marked for deletion

        Raises:
            AggregateError if any object failed to delete
        """
        old_status = ControlPlaneStatus.from_dict(instance.get("status"))
        new_status = self._carry_over(old_status)
        reconciler = ComponentReconciler(
            self.client, instance, hooks=self.hooks, reconcile_config=self.config
        )

        errors = []
        for old_component in reversed(old_status.component_status):
            component_status, component_error = reconciler.reconcile_component(
                old_component.resource, [], old_component
            )
            if component_error is not None:
                errors.append(component_error)
            if component_status.resources:
                new_status.component_status.insert(0, component_status)

        error = aggregate(errors)
        update_delete_status(new_status, error)
        current, _ = self._persist_status(instance, new_status)
        self._remove_finalizer(current)
        if error is not None:
            raise error

    def order_components(
        self,
        renderings: Dict[str, List[Manifest]],
        old_status: ControlPlaneStatus,
    ) -> List[Tuple[str, List[Manifest]]]:
        """Order the components of a pass: the priority list first, then the
        remaining rendered components in render order, then the previously
        installed components that no longer render (with no manifests) in
        reverse status order
        """
        ordered = [
            (name, renderings[name])
            for name in self.component_order
            if name in renderings
        ]
        prioritized = {name for name, _ in ordered}
        ordered.extend(
            (name, manifests)
            for name, manifests in renderings.items()
            if name not in prioritized
        )
        ordered.extend(
            (component.resource, [])
            for component in reversed(old_status.component_status)
            if component.resource not in renderings
        )
        return ordered

    ## Implementation ##########################################################

    @staticmethod
    def _carry_over(old_status: ControlPlaneStatus) -> ControlPlaneStatus:
        return ControlPlaneStatus(
            conditions=copy.deepcopy(old_status.conditions),
            observed_generation=old_status.observed_generation,
            foreign_conditions=copy.deepcopy(old_status.foreign_conditions),
        )

    def _add_finalizer(self, instance: dict) -> ReconciliationResult:
        log.info("Adding finalizer %s", self.config.finalizer_name)
        updated = copy.deepcopy(instance)
        add_finalizer(updated, self.config.finalizer_name)
        try:
            self.client.update(updated)
        except ClusterApiError as err:
            if is_not_found(err) or is_conflict(err):
                log.debug("Could not add finalizer. Waiting for next event: %s", err)
                return ReconciliationResult(requeue=False)
            return ReconciliationResult(requeue=True, exception=err)
        return ReconciliationResult(requeue=True)

    def _persist_status(
        self,
        instance: dict,
        new_status: ControlPlaneStatus,
    ) -> Tuple[dict, Optional[Exception]]:
        """Write the status tree to the control plane resource if it changed.
        Failures are logged. Gone and NotFound are ignored.

        Returns:
            current:  dict
                The latest known state of the resource
            error:  Optional[Exception]
                The error of the status update
        """
        status_dict = new_status.to_dict()
        if not status_changed(instance.get("status"), status_dict):
            log.debug2("Status unchanged")
            return instance, None
        updated = copy.deepcopy(instance)
        updated["status"] = status_dict
        try:
            current = self.client.update_status(updated)
        except ClusterApiError as err:
            if not (is_not_found(err) or is_gone(err)):
                log.error("Failed to update status: %s", err, exc_info=True)
                return instance, err
            log.debug("Control plane gone while updating status")
            return instance, None
        return current, None

    def _remove_finalizer(self, instance: dict):
        """Remove the finalizer, re-fetching the resource after conflicts"""
        finalizer = self.config.finalizer_name
        retries = max(int(self.config.finalizer_removal_retries), 1)
        current = instance
        for attempt in range(retries):
            updated = copy.deepcopy(current)
            if not remove_finalizer(updated, finalizer):
                return
            try:
                self.client.update(updated)
                log.info("Removed finalizer %s", finalizer)
                return
            except ClusterApiError as err:
                if is_not_found(err) or is_gone(err):
                    return
                if not is_conflict(err) or attempt + 1 >= retries:
                    raise
                log.debug("Conflict removing finalizer. Retrying: %s", err)
            current = self.client.get_current(instance)
            if current is None:
                return
