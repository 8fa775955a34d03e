"""
Rendered manifests and the renderers that produce them.

A renderer turns a control plane instance into a mapping from component name
to the named YAML documents rendered for that component. Only documents whose
name ends in .yaml hold objects; each may contain several objects separated by
"---".
"""

# Standard
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
import abc
import os
import re

# Third Party
import yaml

# First Party
import alog

# Local
from .constants import MANIFEST_SUFFIX
from .exceptions import ManifestDecodeError, RenderError

log = alog.use_channel("MNFST")

# Document separator. The separator must start a line.
_SEPARATOR_EXPR = re.compile(r"(?:^|\s*\n)---\s*")


@dataclass
class Manifest:
    """A single named document rendered for a component"""

    name: str
    content: str

    @property
    def is_object_manifest(self) -> bool:
        return self.name.endswith(MANIFEST_SUFFIX)


## Decoding ####################################################################


def split_documents(content: str) -> List[str]:
    """Split a multi-document YAML string into the individual documents,
    dropping documents that are empty or only whitespace
    """
    return [doc for doc in _SEPARATOR_EXPR.split(content or "") if doc.strip()]


def decode_document(raw: str) -> Optional[dict]:
    """Decode a single YAML document into an object dict

    Args:
        raw:  str
            The raw YAML text of one document

    Returns:
        obj:  Optional[dict]
            The decoded object or None if the document only holds comments

    Raises:
        ManifestDecodeError if the document is not valid YAML or does not hold
        a kubernetes object
    """
    try:
        obj = yaml.safe_load(raw)
    except yaml.YAMLError as err:
        raise ManifestDecodeError(f"unable to parse manifest document: {err}") from err
    if obj is None:
        return None
    if not isinstance(obj, dict):
        raise ManifestDecodeError(
            f"manifest document is not an object: {type(obj).__name__}"
        )
    for required in ["apiVersion", "kind"]:
        if not obj.get(required):
            raise ManifestDecodeError(f"manifest document is missing '{required}'")
    if obj["kind"] != "List" and not (obj.get("metadata") or {}).get("name"):
        raise ManifestDecodeError("manifest document is missing 'metadata.name'")
    return obj


def decode_manifest(manifest: Manifest) -> Tuple[List[dict], List[Exception]]:
    """Decode every document of a manifest. A bad document does not stop its
    siblings from being decoded.

    Returns:
        objects:  List[dict]
            The decoded objects in document order
        errors:  List[Exception]
            One ManifestDecodeError per bad document
    """
    objects = []
    errors = []
    for index, raw in enumerate(split_documents(manifest.content)):
        try:
            obj = decode_document(raw)
        except ManifestDecodeError as err:
            log.warning("Bad document %d of %s: %s", index, manifest.name, err)
            errors.append(ManifestDecodeError(f"{manifest.name}[{index}]: {err}"))
            continue
        if obj is not None:
            objects.append(obj)
    return objects, errors


## Renderers ###################################################################


class ManifestRenderer(abc.ABC):
    """Interface for anything that can render the manifests of a control
    plane
    """

    @abc.abstractmethod
    def render(self, instance: dict) -> Dict[str, List[Manifest]]:
        """Render the manifests for a control plane instance

        Args:
            instance:  dict
                The full control plane resource

        Returns:
            renderings:  Dict[str, List[Manifest]]
                Mapping from component name to the manifests of the component.
                Iteration order is the render order.
        """


class StaticRenderer(ManifestRenderer):
    """Renderer that always returns the same renderings"""

    def __init__(self, renderings: Dict[str, List[Manifest]]):
        self.renderings = renderings

    def render(self, instance: dict) -> Dict[str, List[Manifest]]:
        return dict(self.renderings)


class DirectoryRenderer(ManifestRenderer):
    """Renderer that reads pre-rendered charts from disk. Every directory
    below the root that directly holds manifest files is a component named by
    its path relative to the root (e.g. istio/charts/pilot).
    """

    def __init__(self, root: str):
        self.root = root

    def render(self, instance: dict) -> Dict[str, List[Manifest]]:
        if not os.path.isdir(self.root):
            raise RenderError(f"Manifest directory {self.root} does not exist")

        renderings = {}
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames.sort()
            manifest_files = sorted(
                fname for fname in filenames if fname.endswith(MANIFEST_SUFFIX)
            )
            if not manifest_files:
                continue
            component = os.path.relpath(dirpath, self.root).replace(os.sep, "/")
            manifests = []
            for fname in manifest_files:
                path = os.path.join(dirpath, fname)
                log.debug3("Reading manifest file [%s]", path)
                try:
                    with open(path, encoding="utf-8") as handle:
                        content = handle.read()
                except OSError as err:
                    raise RenderError(f"Failed to read {path}: {err}") from err
                manifests.append(Manifest(name=f"{component}/{fname}", content=content))
            renderings[component] = manifests
        log.debug2("Rendered components: %s", list(renderings.keys()))
        return renderings
