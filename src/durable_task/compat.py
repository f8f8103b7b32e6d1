"""Override detection used to keep legacy controller subclasses working."""

from __future__ import annotations

import inspect
from functools import lru_cache


def is_overridden(base: type, derived: type, method_name: str) -> bool:
    """Return whether ``derived`` supplies its own ``method_name``.

    Only classes strictly between ``derived`` and ``base`` in the MRO count, and
    the override must be callable with the positional arguments the base
    definition takes. Extra parameters with defaults are fine; a same-named
    attribute that cannot take those arguments is not an implementation.
    """

    if not isinstance(derived, type) or not issubclass(derived, base):
        raise TypeError(f"{derived!r} is not a subclass of {base.__qualname__}")
    if method_name not in base.__dict__:
        raise AttributeError(f"{base.__qualname__} does not define {method_name}")
    return _is_overridden(base, derived, method_name)


@lru_cache(maxsize=256)
def _is_overridden(base: type, derived: type, method_name: str) -> bool:
    base_function = _unwrap(base.__dict__[method_name])
    for klass in derived.__mro__:
        if klass is base:
            return False
        candidate = klass.__dict__.get(method_name)
        if candidate is None:
            continue
        function = _unwrap(candidate)
        if function is base_function:
            return False
        arity = _positional_arity(base_function)
        return arity is not None and _accepts_positional(function, arity)
    return False


def _unwrap(attribute: object) -> object:
    if isinstance(attribute, (staticmethod, classmethod)):
        return attribute.__func__
    return attribute


def _signature(function: object) -> inspect.Signature | None:
    if not callable(function):
        return None
    try:
        return inspect.signature(function)
    except (TypeError, ValueError):
        return None


def _positional_arity(function: object) -> int | None:
    signature = _signature(function)
    if signature is None:
        return None
    kinds = (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    return sum(1 for parameter in signature.parameters.values() if parameter.kind in kinds)


def _accepts_positional(function: object, arity: int) -> bool:
    signature = _signature(function)
    if signature is None:
        return False
    try:
        signature.bind(*([None] * arity))
    except TypeError:
        return False
    return True
