"""
Attribute selector algebra.

An attribute selector is ``True``, ``False`` or a mapping from attribute
names to nested selectors. ``True`` selects everything below, ``False``
nothing. ``None`` is accepted wherever a selector is expected and means
``False``.

Union (``merge``) is commutative, associative and idempotent; ``remove``
is set difference; ``intersect`` keeps what both sides select.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from typing import Any, TypeAlias

from stowage.errors import UsageError

AttributeSelector: TypeAlias = "bool | dict[str, AttributeSelector]"


def normalize(selector: Any) -> AttributeSelector:
    """Return ``selector`` as a bool or dict, mapping ``None`` to ``False``."""
    if selector is None:
        return False
    if isinstance(selector, bool):
        return selector
    if isinstance(selector, dict):
        return selector
    raise UsageError(
        f"Expected a valid attribute selector, but received a value of type "
        f"'{type(selector).__name__}'"
    )


def from_names(names: Iterable[str]) -> dict[str, AttributeSelector]:
    return {name: True for name in names}


def get(selector: AttributeSelector, name: str) -> AttributeSelector:
    selector = normalize(selector)
    if isinstance(selector, bool):
        return selector
    return normalize(selector.get(name))


def set_within(
    selector: AttributeSelector, name: str, subselector: AttributeSelector
) -> AttributeSelector:
    """Return a copy of ``selector`` with ``name`` set to ``subselector``.

    Setting ``False`` drops the key. Boolean selectors are returned unchanged.
    """
    selector = normalize(selector)
    if isinstance(selector, bool):
        return selector
    subselector = normalize(subselector)
    result = dict(selector)
    if subselector is False:
        result.pop(name, None)
    else:
        result[name] = subselector
    return result


def clone(selector: AttributeSelector) -> AttributeSelector:
    selector = normalize(selector)
    if isinstance(selector, bool):
        return selector
    return {name: clone(sub) for name, sub in selector.items()}


def iterate(selector: AttributeSelector) -> Iterator[tuple[str, AttributeSelector]]:
    """Yield ``(name, subselector)`` pairs, skipping deselected names."""
    selector = normalize(selector)
    if isinstance(selector, bool):
        return
    for name, sub in selector.items():
        sub = normalize(sub)
        if sub is not False:
            yield name, sub


def includes(selector: AttributeSelector, other: AttributeSelector) -> bool:
    """Whether everything ``other`` selects is also selected by ``selector``."""
    selector = normalize(selector)
    other = normalize(other)

    if selector is other:
        return True
    if isinstance(selector, bool):
        return selector
    if isinstance(other, bool):
        return not other

    for name, other_sub in other.items():
        if not includes(selector.get(name), other_sub):
            return False
    return True


def are_equal(selector: AttributeSelector, other: AttributeSelector) -> bool:
    return selector is other or (includes(selector, other) and includes(other, selector))


def merge(selector: AttributeSelector, other: AttributeSelector) -> AttributeSelector:
    """Union of two selectors."""
    selector = normalize(selector)
    other = normalize(other)

    if selector is True or other is True:
        return True
    if selector is False:
        return clone(other)
    if other is False:
        return clone(selector)

    result = clone(selector)
    for name, other_sub in other.items():
        result = set_within(result, name, merge(result.get(name), other_sub))
    return result


def intersect(selector: AttributeSelector, other: AttributeSelector) -> AttributeSelector:
    """Intersection of two selectors."""
    selector = normalize(selector)
    other = normalize(other)

    if selector is False or other is False:
        return False
    if selector is True:
        return clone(other)
    if other is True:
        return clone(selector)

    result: dict[str, AttributeSelector] = {}
    for name, sub in selector.items():
        if name in other:
            result = set_within(result, name, intersect(sub, other[name]))
    return result


def remove(selector: AttributeSelector, other: AttributeSelector) -> AttributeSelector:
    """Set difference: what ``selector`` selects and ``other`` does not."""
    selector = normalize(selector)
    other = normalize(other)

    if other is True:
        return False
    if other is False:
        return clone(selector)
    if selector is True:
        raise UsageError(
            "Cannot remove an 'object' attribute selector from a 'true' attribute selector"
        )
    if selector is False:
        return False

    result = clone(selector)
    for name, other_sub in other.items():
        result = set_within(result, name, remove(result.get(name), other_sub))
    return result


def trim(selector: AttributeSelector) -> AttributeSelector:
    """Drop empty branches; a selector that selects nothing becomes ``False``."""
    selector = normalize(selector)
    if isinstance(selector, bool):
        return selector

    result: dict[str, AttributeSelector] = {}
    for name, sub in selector.items():
        trimmed = trim(sub)
        if trimmed is not False:
            result[name] = trimmed
    return result if result else False


# =============================================================================
# Value traversal
# =============================================================================


def _is_component(value: Any) -> bool:
    from stowage.component.component import Component

    return isinstance(value, Component)


def pick(
    value: Any, selector: AttributeSelector, include_names: Iterable[str] = ()
) -> Any:
    """
    Extract the part of ``value`` covered by ``selector``.

    ``value`` may be a component, a plain dict or a list of those.
    ``include_names`` are copied from plain dicts even when not selected
    (e.g. ``__component`` tags).
    """
    selector = normalize(selector)
    if selector is False:
        raise UsageError(
            "Cannot pick attributes from a value when the specified attribute selector is 'false'"
        )
    return _pick(value, selector, tuple(include_names))


def _pick(value: Any, selector: AttributeSelector, include_names: tuple[str, ...]) -> Any:
    if selector is True or value is None:
        return value

    if isinstance(value, list):
        return [_pick(item, selector, include_names) for item in value]

    is_component = _is_component(value)
    if not (is_component or isinstance(value, dict)):
        raise UsageError(
            "Cannot pick attributes from a value that is not a component, a plain object, "
            f"or a list (value type: '{type(value).__name__}')"
        )

    result: dict[str, Any] = {}
    if not is_component:
        for name in include_names:
            if name in value:
                result[name] = value[name]

    for name, sub in iterate(selector):
        if is_component:
            attribute = value.get_attribute(name)
            if not attribute.is_set(value):
                continue
            item = attribute.get_value(value)
        else:
            if name not in value:
                continue
            item = value[name]
        result[name] = _pick(item, sub, include_names)
    return result


TraverseIteratee = Callable[[Any, AttributeSelector, dict[str, Any]], None]


def traverse(
    value: Any,
    selector: AttributeSelector,
    iteratee: TraverseIteratee,
    *,
    include_subtrees: bool = False,
    include_leaves: bool = True,
) -> None:
    """
    Walk ``value`` following ``selector``, calling ``iteratee(value, subselector, context)``.

    Leaves (``True`` subselectors or missing values) are visited when
    ``include_leaves``; nested components and dicts (never the root) when
    ``include_subtrees``. ``context`` holds ``name``, ``parent`` and
    ``is_array``.
    """
    selector = normalize(selector)
    if selector is False:
        return
    _traverse(value, selector, iteratee, include_subtrees, include_leaves, {}, False)


def _traverse(
    value: Any,
    selector: AttributeSelector,
    iteratee: TraverseIteratee,
    include_subtrees: bool,
    include_leaves: bool,
    context: dict[str, Any],
    is_deep: bool,
) -> None:
    if selector is True or value is None:
        if include_leaves:
            iteratee(value, selector, context)
        return

    if isinstance(value, list):
        for item in value:
            _traverse(
                item,
                selector,
                iteratee,
                include_subtrees,
                include_leaves,
                {**context, "is_array": True},
                is_deep,
            )
        return

    is_component = _is_component(value)
    if not (is_component or isinstance(value, dict)):
        raise UsageError(
            "Cannot traverse attributes from a value that is not a component, a plain object, "
            f"or a list (value type: '{type(value).__name__}')"
        )

    if is_deep and include_subtrees:
        iteratee(value, selector, context)

    for name, sub in iterate(selector):
        if is_component:
            attribute = value.get_attribute(name)
            if not attribute.is_set(value):
                continue
            item = attribute.get_value(value)
        else:
            item = value.get(name)
        _traverse(
            item,
            sub,
            iteratee,
            include_subtrees,
            include_leaves,
            {"name": name, "parent": value},
            True,
        )
