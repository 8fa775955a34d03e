"""
Shared module to hold constant values for the library
"""

# Prefix for all mesh-owned labels and annotations
METADATA_NAMESPACE = "maistra.io"

# Label carrying the namespace of the control plane that owns the resource.
# Cross-namespace and cluster-scoped resources cannot carry an owner reference,
# so this label is what external pruners use to find them.
OWNER_KEY = f"{METADATA_NAMESPACE}/owner"

# Annotation holding the mesh generation a resource was last reconciled at
MESH_GENERATION_KEY = f"{METADATA_NAMESPACE}/mesh-generation"

# Standard application labels
KUBERNETES_APP_NAMESPACE = "app.kubernetes.io"
KUBERNETES_APP_NAME_KEY = f"{KUBERNETES_APP_NAMESPACE}/name"
KUBERNETES_APP_INSTANCE_KEY = f"{KUBERNETES_APP_NAMESPACE}/instance"
KUBERNETES_APP_VERSION_KEY = f"{KUBERNETES_APP_NAMESPACE}/version"
KUBERNETES_APP_COMPONENT_KEY = f"{KUBERNETES_APP_NAMESPACE}/component"
KUBERNETES_APP_PART_OF_KEY = f"{KUBERNETES_APP_NAMESPACE}/part-of"
KUBERNETES_APP_MANAGED_BY_KEY = f"{KUBERNETES_APP_NAMESPACE}/managed-by"

# Annotation used by kubectl (and by the patch engine) to remember the last
# configuration that was applied to an object
LAST_APPLIED_CONFIG_ANNOTATION = "kubectl.kubernetes.io/last-applied-configuration"

# Log config annotations
LOG_DEFAULT_LEVEL_NAME = f"{METADATA_NAMESPACE}/log-default-level"
LOG_FILTERS_NAME = f"{METADATA_NAMESPACE}/log-filters"
LOG_THREAD_ID_NAME = f"{METADATA_NAMESPACE}/log-thread-id"
LOG_JSON_NAME = f"{METADATA_NAMESPACE}/log-json"

# Kind of the synthetic wrapper object holding a list of items
KUBE_LIST_KIND = "List"

# Deletion propagation policies
PROPAGATION_FOREGROUND = "Foreground"
PROPAGATION_BACKGROUND = "Background"

# Manifest documents are only processed if their name has this suffix
MANIFEST_SUFFIX = ".yaml"

# Wildcard for hooks that apply to every component
ALL_COMPONENTS = "*"

# Delimiter used for nested dict keys
NESTED_DICT_DELIM = "."
