"""
Package exports
"""

# Local
from . import config, status
from .cluster import ClusterClientBase, DryRunClusterClient, OpenshiftClusterClient
from .component_reconciler import ComponentReconciler
from .controller import ControlPlaneController
from .controlplane import ControlPlaneReconciler, ReconciliationResult, RequeueParams
from .exceptions import AggregateError, aggregate, assert_cluster, assert_config
from .hooks import HookRegistry, default_hooks
from .manifest import DirectoryRenderer, Manifest, ManifestRenderer, StaticRenderer
from .object_reconciler import ObjectReconciler
from .patch import Patch, PatchFactory
from .status import ComponentStatus, ControlPlaneStatus, ResourceKey, Status
