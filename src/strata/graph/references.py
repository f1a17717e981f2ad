"""Reference markers inside template values.

Template values are JSON-shaped: dicts, lists and scalars. ``iter_references``
is the one visitor that recognises ``Ref`` and ``Fn::GetAtt``; dependency
extraction and intrinsic resolution both go through it or mirror its rules.
"""

from __future__ import annotations

from typing import Any, Iterator, Mapping

from strata.core.exceptions import UnresolvedReferenceError, UnsupportedIntrinsicError
from strata.models.resource import ProvisionedResource, Reference, ReferenceKind

NO_VALUE = "AWS::NoValue"

_REMOVE = object()


def parse_reference(value: Any) -> Reference | None:
    """Return the marker if ``value`` is a single-key Ref/GetAtt object."""
    if not isinstance(value, dict) or len(value) != 1:
        return None

    if "Ref" in value:
        target = value["Ref"]
        if isinstance(target, str):
            return Reference(kind=ReferenceKind.REF, target=target)
        return None

    if "Fn::GetAtt" in value:
        arg = value["Fn::GetAtt"]
        if isinstance(arg, list) and len(arg) >= 1 and isinstance(arg[0], str):
            attribute = arg[1] if len(arg) > 1 and isinstance(arg[1], str) else None
            return Reference(kind=ReferenceKind.GET_ATT, target=arg[0], attribute=attribute)
        if isinstance(arg, str) and "." in arg:
            target, attribute = arg.split(".", 1)
            return Reference(kind=ReferenceKind.GET_ATT, target=target, attribute=attribute)
    return None


def iter_references(value: Any) -> Iterator[Reference]:
    """Yield every reference marker in ``value``, depth first, in document order."""
    if isinstance(value, dict):
        ref = parse_reference(value)
        if ref is not None:
            yield ref
            # a GetAtt attribute name may itself be a Ref to a parameter
            if ref.kind is ReferenceKind.REF:
                return
        for child in value.values():
            yield from iter_references(child)
    elif isinstance(value, list):
        for item in value:
            yield from iter_references(item)


def resolve_intrinsics(
    value: Any,
    resources: Mapping[str, ProvisionedResource],
    pseudo_parameters: Mapping[str, str] | None = None,
    parameters: Mapping[str, Any] | None = None,
) -> Any:
    """Replace Ref and Fn::GetAtt with concrete values.

    Ref resolves to a provisioned identifier, a pseudo-parameter or a template
    parameter; Fn::GetAtt resolves to a provisioned attribute (dotted names walk
    nested properties). Ref to AWS::NoValue drops the enclosing key or item.
    Any other ``Fn::*`` function raises UnsupportedIntrinsicError rather than
    being passed through unevaluated.
    """
    resolved = _resolve(value, resources, pseudo_parameters or {}, parameters or {})
    return None if resolved is _REMOVE else resolved


def _resolve(value, resources, pseudo, parameters):
    if isinstance(value, dict):
        ref = parse_reference(value)
        if ref is not None:
            return _lookup(ref, resources, pseudo, parameters)
        if len(value) == 1:
            (key,) = value
            if isinstance(key, str) and key.startswith("Fn::"):
                raise UnsupportedIntrinsicError(key)
        out = {}
        for key, child in value.items():
            item = _resolve(child, resources, pseudo, parameters)
            if item is not _REMOVE:
                out[key] = item
        return out
    if isinstance(value, list):
        return [
            item for item in (_resolve(v, resources, pseudo, parameters) for v in value)
            if item is not _REMOVE
        ]
    return value


def _lookup(ref: Reference, resources, pseudo, parameters) -> Any:
    if ref.kind is ReferenceKind.REF:
        if ref.target == NO_VALUE:
            return _REMOVE
        if ref.is_pseudo_parameter:
            if ref.target in pseudo:
                return pseudo[ref.target]
            raise UnresolvedReferenceError(ref.target)
        if ref.target in parameters:
            return parameters[ref.target]
        if ref.target in resources:
            return resources[ref.target].identifier
        raise UnresolvedReferenceError(ref.target)

    resource = resources.get(ref.target)
    if resource is None or ref.attribute is None:
        raise UnresolvedReferenceError(ref.target, ref.attribute)
    current: Any = resource.attributes
    for part in ref.attribute.split("."):
        if not isinstance(current, dict) or part not in current:
            raise UnresolvedReferenceError(ref.target, ref.attribute)
        current = current[part]
    return current
