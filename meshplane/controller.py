"""
The ControlPlaneController is the entry point a watch loop calls for every event
on a control plane resource. It sets up logging for the reconcile, assembles
the reconcilers and runs them.
"""

# Standard
from typing import List, Optional, Union
import base64
import logging
import uuid

# First Party
import aconfig
import alog

# Local
from . import config, constants
from .cluster import ClusterClientBase, DryRunClusterClient, OpenshiftClusterClient
from .controlplane import ControlPlaneReconciler, ReconciliationResult, RequeueParams
from .hooks import HookRegistry, default_hooks
from .log_format import MeshplaneJsonFormatter
from .manifest import ManifestRenderer

log = alog.use_channel("CTRLR")


class ControlPlaneController:
    """Runs reconciles of control plane resources"""

    def __init__(
        self,
        renderer: ManifestRenderer,
        client: Optional[ClusterClientBase] = None,
        hooks: Optional[HookRegistry] = None,
        component_order: Optional[List[str]] = None,
    ):
        """
        Args:
            renderer:  ManifestRenderer
                Renders the manifests of a control plane
            client:  Optional[ClusterClientBase]
                The cluster client. If not given, one is created based on
                config.dry_run.
            hooks:  Optional[HookRegistry]
                The hooks to use. Defaults to default_hooks for the client.
            component_order:  Optional[List[str]]
                Override for config.component_order
        """
        self.renderer = renderer
        self.client = client
        self.hooks = hooks
        self.component_order = component_order

    ## Reconciliation ##########################################################

    @alog.logged_function(log.info)
    def reconcile(self, resource: dict) -> ReconciliationResult:
        """Reconcile a control plane resource. The steps are:

            1. Parse the raw resource
            2. Setup logging based on config with overrides from the resource
            3. Setup the cluster client and hooks
            4. Run the control plane reconciler

        Args:
            resource:  dict
                A raw representation of the resource to be reconciled

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the reconcile
        """
        cr_manifest = self.parse_manifest(resource)
        reconcile_id = self.generate_id()
        self.configure_logging(cr_manifest, reconcile_id)

        client = self.setup_client()
        hooks = self.hooks if self.hooks is not None else default_hooks(client)
        reconciler = ControlPlaneReconciler(
            client,
            self.renderer,
            hooks=hooks,
            component_order=self.component_order,
        )
        return reconciler.reconcile(resource)

    def safe_reconcile(self, resource: dict) -> ReconciliationResult:
        """Call reconcile and turn any error into a requeue. This function
        guarantees a safe result which is needed by watch loops.

        Args:
            resource:  dict
                A raw representation of the resource to be reconciled

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the reconcile
        """
        try:
            return self.reconcile(resource)
        except Exception as exc:  # pylint: disable=broad-except
            log.warning("Handling caught error in reconcile: %s", exc, exc_info=True)
            log.info("Requeuing control plane due to error during reconcile")
            return ReconciliationResult(
                requeue=True, requeue_params=RequeueParams(), exception=exc
            )

    ## Reconciliation Stages ###################################################

    def setup_client(self) -> ClusterClientBase:
        """Get the configured client, creating one if needed"""
        if self.client is None:
            if config.dry_run:
                log.debug("Using DryRunClusterClient")
                self.client = DryRunClusterClient()
            else:
                log.debug("Using OpenshiftClusterClient")
                self.client = OpenshiftClusterClient()
        return self.client

    @classmethod
    def parse_manifest(cls, resource: Union[dict, aconfig.Config]) -> aconfig.Config:
        """Parse a raw resource into an aconfig Config

        Args:
            resource: Union[dict, aconfig.Config]
                The resource to be parsed into a manifest

        Returns
            cr_manifest: aconfig.Config
                The parsed config
        """
        try:
            cr_manifest = aconfig.Config(resource, override_env_vars=False)
        except (ValueError, SyntaxError, AttributeError) as exc:
            raise ValueError("Failed to parse control plane resource") from exc
        return cr_manifest

    @classmethod
    def configure_logging(cls, cr_manifest: aconfig.Config, reconcile_id: str):
        """Configure the logging for a given reconcile

        Args:
            cr_manifest: aconfig.Config
                The resource to get annotation overrides from
            reconcile_id: str
                The unique id for the reconcile
        """
        annotations = cr_manifest.get("metadata", {}).get("annotations", {}) or {}
        default_level = annotations.get(
            constants.LOG_DEFAULT_LEVEL_NAME, config.log_level
        )
        filters = annotations.get(constants.LOG_FILTERS_NAME, config.log_filters)
        log_json = annotations.get(constants.LOG_JSON_NAME, str(config.log_json))
        log_thread_id = annotations.get(
            constants.LOG_THREAD_ID_NAME, str(config.log_thread_id)
        )

        # Convert boolean args
        log_json = (log_json or "").lower() == "true"
        log_thread_id = (log_thread_id or "").lower() == "true"

        # Keep the existing handler so output keeps going to the same place
        handler_generator = None
        if logging.root.handlers:
            old_handler = logging.root.handlers[0]

            def handler_generator():
                return old_handler

        alog.configure(
            default_level=default_level,
            filters=filters,
            formatter=MeshplaneJsonFormatter(cr_manifest, reconcile_id)
            if log_json
            else "pretty",
            thread_id=log_thread_id,
            handler_generator=handler_generator,
        )

    @classmethod
    def generate_id(cls) -> str:
        """Generates a unique human readable id for this reconcile

        Returns:
            id: str
                A unique base32 encoded id
        """
        uuid4 = uuid.uuid4()
        base32_str = base64.b32encode(uuid4.bytes).decode("utf-8")
        reconcile_id = base32_str[:22]
        log.debug("Generated reconcile id: %s", reconcile_id)
        return reconcile_id
