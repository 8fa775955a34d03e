"""
This module holds the status model for a control plane and the transition
rules shared by every level of the reconcile.

A control plane status is a tree:

{
    "conditions": [...],
    "observedGeneration": N,
    "componentStatus": [
        {
            "resource": "<component name>",
            "conditions": [...],
            "observedGeneration": N,
            "resources": [
                {
                    "resource": "<namespace>/<name>=<apiVersion>,Kind=<kind>",
                    "conditions": [...],
                    "observedGeneration": N,
                },
            ],
        },
    ],
}

Each level carries at most one condition of each ConditionType. Empty fields
are omitted from the serialized form.
"""

# Standard
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
import copy

# Third Party
from deepdiff import DeepDiff

# First Party
import alog

# Local
from .exceptions import is_gone, is_not_found
from .utils import join_api_version, now_timestamp, split_api_version

log = alog.use_channel("STTUS")

## Public ######################################################################

# Keys of the serialized status
CONDITIONS_KEY = "conditions"
OBSERVED_GENERATION_KEY = "observedGeneration"
RESOURCE_KEY = "resource"
RESOURCES_KEY = "resources"
COMPONENT_STATUS_KEY = "componentStatus"

# The key in the condition used for the timestamp
TIMESTAMP_KEY = "lastTransitionTime"


class ConditionType(Enum):
    """The kinds of conditions tracked at every level of the status tree"""

    # Whether the resources defined through the control plane are installed
    INSTALLED = "Installed"

    # Whether the last reconcile of those resources succeeded
    RECONCILED = "Reconciled"


class ConditionStatus(Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ConditionReason(Enum):
    """Short reasons indicating how a condition came to be in its state"""

    INSTALL_SUCCESSFUL = "InstallSuccessful"
    INSTALL_ERROR = "InstallError"
    RECONCILE_SUCCESSFUL = "ReconcileSuccessful"
    RECONCILE_ERROR = "ReconcileError"
    DELETION_SUCCESSFUL = "DeletionSuccessful"
    DELETION_ERROR = "DeletionError"


@dataclass
class Condition:
    """A single typed condition"""

    type: ConditionType
    status: ConditionStatus = ConditionStatus.UNKNOWN
    reason: Optional[ConditionReason] = None
    message: str = ""
    last_transition_time: str = ""

    def to_dict(self) -> dict:
        out = {"type": self.type.value, "status": self.status.value}
        if self.reason is not None:
            out["reason"] = self.reason.value
        if self.message:
            out["message"] = self.message
        if self.last_transition_time:
            out[TIMESTAMP_KEY] = self.last_transition_time
        return out

    @classmethod
    def from_dict(cls, raw: dict) -> "Condition":
        """Parse a known condition. A status or reason written by another
        version reads as Unknown or no reason.
        """
        return cls(
            type=ConditionType(raw["type"]),
            status=_parse_enum(ConditionStatus, raw.get("status"))
            or ConditionStatus.UNKNOWN,
            reason=_parse_enum(ConditionReason, raw.get("reason")),
            message=raw.get("message", ""),
            last_transition_time=raw.get(TIMESTAMP_KEY, ""),
        )


@dataclass(frozen=True)
class ResourceKey:
    """Identity of a live cluster object. Namespace is empty for cluster scoped
    kinds.
    """

    group: str
    version: str
    kind: str
    namespace: str
    name: str

    @classmethod
    def from_object(cls, obj: dict) -> "ResourceKey":
        """Derive the key of an object (or manifest) dict

        Args:
            obj:  dict
                Any dict with apiVersion, kind and metadata.name

        Returns:
            key:  ResourceKey
                The identity of the object
        """
        group, version = split_api_version(obj.get("apiVersion", ""))
        metadata = obj.get("metadata") or {}
        return cls(
            group=group,
            version=version,
            kind=obj.get("kind", ""),
            namespace=metadata.get("namespace") or "",
            name=metadata.get("name") or "",
        )

    @classmethod
    def parse(cls, key: str) -> "ResourceKey":
        """Parse the serialized form <namespace>/<name>=<apiVersion>,Kind=<kind>"""
        namespaced_name, _, gvk = key.partition("=")
        namespace, _, name = namespaced_name.partition("/")
        api_version, _, kind = gvk.partition(",Kind=")
        group, version = split_api_version(api_version)
        return cls(
            group=group, version=version, kind=kind, namespace=namespace, name=name
        )

    @property
    def api_version(self) -> str:
        return join_api_version(self.group, self.version)

    def to_placeholder(self) -> dict:
        """Build a minimal object usable to get or delete the live object"""
        metadata = {"name": self.name}
        if self.namespace:
            metadata["namespace"] = self.namespace
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": metadata,
        }

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}={self.api_version},Kind={self.kind}"


@dataclass
class StatusType:
    """Conditions plus the generation they were observed at"""

    conditions: List[Condition] = field(default_factory=list)
    observed_generation: int = 0

    # Conditions of types owned by other writers, kept as read
    foreign_conditions: List[dict] = field(default_factory=list)

    def get_condition(self, condition_type: ConditionType) -> Condition:
        """Get the condition of the given type. A missing condition reads as
        Unknown.
        """
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return Condition(type=condition_type, status=ConditionStatus.UNKNOWN)

    def set_condition(self, condition: Condition) -> "StatusType":
        """Replace the condition of the same type. The transition time is only
        refreshed when the status value changes.
        """
        condition = copy.copy(condition)
        for i, existing in enumerate(self.conditions):
            if existing.type == condition.type:
                if existing.status != condition.status:
                    condition.last_transition_time = now_timestamp()
                else:
                    condition.last_transition_time = existing.last_transition_time
                self.conditions[i] = condition
                return self
        condition.last_transition_time = now_timestamp()
        self.conditions.append(condition)
        return self

    def remove_condition(self, condition_type: ConditionType) -> "StatusType":
        self.conditions = [
            condition
            for condition in self.conditions
            if condition.type != condition_type
        ]
        return self

    def is_true(self, condition_type: ConditionType) -> bool:
        return self.get_condition(condition_type).status == ConditionStatus.TRUE

    def _base_dict(self) -> dict:
        out = {}
        conditions = [cond.to_dict() for cond in self.conditions]
        conditions.extend(copy.deepcopy(self.foreign_conditions))
        if conditions:
            out[CONDITIONS_KEY] = conditions
        if self.observed_generation:
            out[OBSERVED_GENERATION_KEY] = self.observed_generation
        return out

    @staticmethod
    def _base_kwargs(raw: dict) -> dict:
        conditions, foreign_conditions = [], []
        for cond in raw.get(CONDITIONS_KEY) or []:
            if _parse_enum(ConditionType, cond.get("type")) is None:
                log.debug2("Keeping foreign condition %s", cond.get("type"))
                foreign_conditions.append(copy.deepcopy(cond))
            else:
                conditions.append(Condition.from_dict(cond))
        return {
            "conditions": conditions,
            "observed_generation": raw.get(OBSERVED_GENERATION_KEY, 0) or 0,
            "foreign_conditions": foreign_conditions,
        }


@dataclass
class Status(StatusType):
    """The status of a single cluster object"""

    resource: Optional[ResourceKey] = None

    def to_dict(self) -> dict:
        out = {}
        if self.resource is not None:
            out[RESOURCE_KEY] = str(self.resource)
        out.update(self._base_dict())
        return out

    @classmethod
    def from_dict(cls, raw: dict) -> "Status":
        resource = raw.get(RESOURCE_KEY)
        return cls(
            resource=ResourceKey.parse(resource) if resource else None,
            **cls._base_kwargs(raw),
        )


@dataclass
class ComponentStatus(StatusType):
    """The status of one rendered component and every object created for it,
    in creation order
    """

    resource: str = ""
    resources: List[Status] = field(default_factory=list)

    def find_resource_by_key(self, key: ResourceKey) -> Optional[Status]:
        for status in self.resources:
            if status.resource == key:
                return status
        return None

    def find_resources_of_kind(self, kind: str) -> List[Status]:
        """All object statuses of the given kind, ignoring group and version"""
        return [
            status
            for status in self.resources
            if status.resource is not None and status.resource.kind == kind
        ]

    def to_dict(self) -> dict:
        out = {}
        if self.resource:
            out[RESOURCE_KEY] = self.resource
        out.update(self._base_dict())
        if self.resources:
            out[RESOURCES_KEY] = [status.to_dict() for status in self.resources]
        return out

    @classmethod
    def from_dict(cls, raw: dict) -> "ComponentStatus":
        return cls(
            resource=raw.get(RESOURCE_KEY, ""),
            resources=[Status.from_dict(res) for res in raw.get(RESOURCES_KEY) or []],
            **cls._base_kwargs(raw),
        )


@dataclass
class ControlPlaneStatus(StatusType):
    """The top level status of a control plane"""

    component_status: List[ComponentStatus] = field(default_factory=list)

    def find_component_by_name(self, name: str) -> Optional[ComponentStatus]:
        for status in self.component_status:
            if status.resource == name:
                return status
        return None

    def to_dict(self) -> dict:
        out = self._base_dict()
        if self.component_status:
            out[COMPONENT_STATUS_KEY] = [
                status.to_dict() for status in self.component_status
            ]
        return out

    @classmethod
    def from_dict(cls, raw: Optional[dict]) -> "ControlPlaneStatus":
        raw = raw or {}
        return cls(
            component_status=[
                ComponentStatus.from_dict(comp)
                for comp in raw.get(COMPONENT_STATUS_KEY) or []
            ],
            **cls._base_kwargs(raw),
        )


## Transitions #################################################################


def update_reconcile_status(status: StatusType, err: Optional[Exception] = None):
    """Apply the outcome of an install/reconcile attempt to a status. Once
    Installed is True, an error only flips Reconciled.

    Args:
        status:  StatusType
            The status to update in place
        err:  Optional[Exception]
            The error from the attempt, None for success
    """
    install_status = status.get_condition(ConditionType.INSTALLED).status
    if err is None:
        if install_status != ConditionStatus.TRUE:
            reason = ConditionReason.INSTALL_SUCCESSFUL
            _set(status, ConditionType.INSTALLED, True, reason)
            _set(status, ConditionType.RECONCILED, True, reason)
        else:
            reason = ConditionReason.RECONCILE_SUCCESSFUL
            _set(status, ConditionType.RECONCILED, True, reason)
    elif install_status == ConditionStatus.UNKNOWN:
        reason = ConditionReason.INSTALL_ERROR
        _set(status, ConditionType.INSTALLED, False, reason, str(err))
        _set(status, ConditionType.RECONCILED, False, reason, str(err))
    else:
        reason = ConditionReason.RECONCILE_ERROR
        _set(status, ConditionType.RECONCILED, False, reason, str(err))


def update_delete_status(status: StatusType, err: Optional[Exception] = None):
    """Apply the outcome of a delete attempt to a status. NotFound and Gone
    count as a successful delete.
    """
    if err is None or is_not_found(err) or is_gone(err):
        reason = ConditionReason.DELETION_SUCCESSFUL
        _set(status, ConditionType.INSTALLED, False, reason)
        _set(status, ConditionType.RECONCILED, True, reason)
    else:
        reason = ConditionReason.DELETION_ERROR
        _set(status, ConditionType.RECONCILED, False, reason, str(err))


def status_changed(current_status: Optional[dict], new_status: Optional[dict]) -> bool:
    """Compare two serialized status trees to determine if there is a
    meaningful change between them. A meaningful change is any change besides a
    timestamp.

    Args:
        current_status:  Optional[dict]
            The raw status dict from the current resource
        new_status:  Optional[dict]
            The proposed new status

    Returns:
        status_changed:  bool
            True if there is a meaningful change
    """
    if not isinstance(current_status, dict) or not isinstance(new_status, dict):
        return True

    return bool(
        DeepDiff(
            current_status,
            new_status,
            exclude_obj_callback=lambda _, path: path.endswith(f"['{TIMESTAMP_KEY}']"),
        )
    )


## Implementation ##############################################################


def _parse_enum(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError:
        return None


def _set(
    status: StatusType,
    condition_type: ConditionType,
    value: bool,
    reason: ConditionReason,
    message: str = "",
):
    status.set_condition(
        Condition(
            type=condition_type,
            status=ConditionStatus.TRUE if value else ConditionStatus.FALSE,
            reason=reason,
            message=message,
        )
    )
