"""
The cluster module holds the clients used to talk to the cluster
"""

# Local
from .base import ClusterClientBase
from .dry_run_client import DryRunClusterClient
from .openshift_client import OpenshiftClusterClient
from .owner_references import add_owner_reference, make_owner_reference
