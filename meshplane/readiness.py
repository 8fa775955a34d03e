"""
Post-install waits run after a component has been reconciled. They block the
reconcile with a bounded exponential backoff until workloads report ready
replicas and webhook configurations have a CA bundle, and only warn when the
budget runs out.
"""

# Standard
from typing import Callable, Optional
import time

# First Party
import alog

# Local
from .cluster import ClusterClientBase
from .exceptions import MeshplaneError
from .status import ComponentStatus, ConditionType, ResourceKey

log = alog.use_channel("READY")

WORKLOAD_KINDS = ["StatefulSet", "Deployment", "DeploymentConfig"]
WEBHOOK_KINDS = ["ValidatingWebhookConfiguration", "MutatingWebhookConfiguration"]


class ReadinessWaiter:
    """Component hook that waits for the installed workloads and webhooks of a
    component
    """

    def __init__(
        self,
        client: ClusterClientBase,
        max_attempts: int = 10,
        backoff_seconds: float = 6.0,
        backoff_factor: float = 1.1,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """
        Args:
            client:  ClusterClientBase
                The client used to poll the objects
            max_attempts:  int
                Number of checks made for each object
            backoff_seconds:  float
                Delay after the first failed check
            backoff_factor:  float
                Multiplier applied to the delay after every failed check
            sleep:  Optional[Callable[[float], None]]
                Function used to wait between checks. Defaults to time.sleep.
        """
        self._client = client
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._backoff_factor = backoff_factor
        self._sleep = sleep or time.sleep

    def __call__(
        self,
        component_name: str,
        component_status: ComponentStatus,
        _instance: Optional[dict] = None,
    ):
        """Wait for the webhooks and then the workloads of a component"""
        log.debug2("Waiting for readiness of component [%s]", component_name)
        for kind in WEBHOOK_KINDS:
            for key in self._installed_of_kind(component_status, kind):
                self.wait_for_webhook(key)
        for kind in WORKLOAD_KINDS:
            for key in self._installed_of_kind(component_status, kind):
                self.wait_for_workload(key)

    def wait_for_workload(self, key: ResourceKey) -> bool:
        """Wait for status.readyReplicas to be positive. A missing workload
        counts as ready.
        """
        log.info("Waiting for %s/%s to become ready", key.kind, key.name)

        def check(obj: dict) -> bool:
            return (obj.get("status") or {}).get("readyReplicas", 0) > 0

        ready = self._wait(key, check)
        if not ready:
            log.warning("%s/%s failed to become ready in time", key.kind, key.name)
        return ready

    def wait_for_webhook(self, key: ResourceKey) -> bool:
        """Wait for every webhook to carry a CA bundle. A missing configuration
        or one without webhooks counts as initialized.
        """
        log.info("Waiting for CA bundle of %s/%s", key.kind, key.name)

        def check(obj: dict) -> bool:
            return all(
                (webhook.get("clientConfig") or {}).get("caBundle")
                for webhook in obj.get("webhooks") or []
            )

        ready = self._wait(key, check)
        if not ready:
            log.warning(
                "CA bundle of %s/%s failed to initialize in time", key.kind, key.name
            )
        return ready

    ## Implementation ##########################################################

    @staticmethod
    def _installed_of_kind(component_status: ComponentStatus, kind: str):
        return [
            status.resource
            for status in component_status.find_resources_of_kind(kind)
            if status.is_true(ConditionType.INSTALLED)
        ]

    def _wait(self, key: ResourceKey, check: Callable[[dict], bool]) -> bool:
        delay = self._backoff_seconds
        for attempt in range(self._max_attempts):
            try:
                obj = self._client.get_by_key(key)
            except MeshplaneError as err:
                log.warning("Unexpected error waiting for %s: %s", key, err)
                return False
            if obj is None:
                log.warning("Attempting to wait on unknown %s/%s", key.kind, key.name)
                return True
            if check(obj):
                return True
            if attempt + 1 < self._max_attempts:
                log.debug3("%s not ready. Retrying in %.1fs", key, delay)
                self._sleep(delay)
                delay *= self._backoff_factor
        return False
