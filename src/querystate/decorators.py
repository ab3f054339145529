"""Decorators binding async functions to a query client.

``@query`` resolves calls through the client cache, so concurrent calls
with the same arguments share one fetch and results are reused while
fresh. ``@invalidates`` marks key prefixes stale after a mutation.
"""

import functools
import inspect
import re
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

from querystate.core.entities.query_config import QueryOptions
from querystate.core.entities.query_key import QueryKey
from querystate.core.services.query_client import QueryClient

F = TypeVar("F", bound=Callable[..., Any])

KeySpec = Sequence[Any] | Callable[..., QueryKey] | None

_PLACEHOLDER = re.compile(r"\{(\w+)\}")

# Leading parameters that bind the instance or class of a method.
_RECEIVERS = frozenset({"self", "cls"})


def query(
    client: QueryClient,
    key: KeySpec = None,
    options: QueryOptions | None = None,
) -> Callable[[F], F]:
    """Decorator resolving an async function through a query client.

    Args:
        client: The query client to cache results in.
        key: Key template or key function. A template is a sequence of
            segments where ``"{arg_name}"`` placeholders are filled from the
            call arguments; a segment that is exactly one placeholder keeps
            the argument's type. A callable receives the call arguments and
            returns the key. By default the key is the function's qualified
            name followed by its bound arguments; a method's leading
            ``self`` or ``cls`` is left out, so instances share entries.
        options: Per-call overrides passed to ``resolve``.

    Returns:
        Decorated function.

    Example:
        @query(client, key=["users", "{user_id}"])
        async def get_user(user_id: int) -> dict:
            return await api.get(f"/users/{user_id}")
    """

    def decorator(func: F) -> F:
        signature = inspect.signature(func)

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            arguments = _bind(signature, args, kwargs)
            query_key = _build_key(func, key, args, kwargs, arguments)
            return await client.resolve(
                query_key,
                functools.partial(func, *args, **kwargs),
                options,
            )

        return wrapper  # type: ignore

    return decorator


def invalidates(
    client: QueryClient,
    keys: Sequence[Sequence[Any]],
    refetch: bool = True,
) -> Callable[[F], F]:
    """Decorator invalidating key prefixes after a mutation succeeds.

    Args:
        client: The query client to invalidate.
        keys: Key prefix templates, interpolated like ``query`` keys.
        refetch: Whether observed entries are refetched.

    Returns:
        Decorated function.

    Example:
        @invalidates(client, keys=[["users", "{user_id}"], ["users", "list"]])
        async def rename_user(user_id: int, name: str) -> None:
            await api.patch(f"/users/{user_id}", {"name": name})
    """

    def decorator(func: F) -> F:
        signature = inspect.signature(func)

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            # Execute the mutation first
            result = await func(*args, **kwargs)

            arguments = _bind(signature, args, kwargs)
            for template in keys:
                client.invalidate(_interpolate_key(template, arguments), refetch=refetch)

            return result

        return wrapper  # type: ignore

    return decorator


def _bind(
    signature: inspect.Signature,
    args: tuple[Any, ...],
    kwargs: dict[str, Any],
) -> dict[str, Any]:
    """Map call arguments to parameter names, defaults included."""
    bound = signature.bind(*args, **kwargs)
    bound.apply_defaults()
    return dict(bound.arguments)


def _build_key(
    func: Callable[..., Any],
    key_spec: KeySpec,
    args: tuple[Any, ...],
    kwargs: dict[str, Any],
    arguments: dict[str, Any],
) -> QueryKey:
    """Build the query key for a call.

    Args:
        func: The decorated function.
        key_spec: Key template, key function, or None.
        args: Positional arguments.
        kwargs: Keyword arguments.
        arguments: Bound arguments by parameter name.

    Returns:
        The query key.
    """
    if key_spec is None:
        segments: list[Any] = [func.__qualname__]
        call_arguments = _without_receiver(arguments)
        if call_arguments:
            segments.append(call_arguments)
        return segments

    if callable(key_spec):
        return key_spec(*args, **kwargs)

    return _interpolate_key(key_spec, arguments)


def _interpolate_key(template: Sequence[Any], arguments: dict[str, Any]) -> list[Any]:
    """Fill ``{arg_name}`` placeholders in a key template.

    Args:
        template: Key segments, strings may contain placeholders.
        arguments: Values by parameter name.

    Returns:
        The interpolated key segments.
    """
    if isinstance(template, str):
        template = [template]
    return [_interpolate_segment(segment, arguments) for segment in template]


def _interpolate_segment(segment: Any, arguments: dict[str, Any]) -> Any:
    if not isinstance(segment, str):
        return segment

    whole = _PLACEHOLDER.fullmatch(segment)
    if whole is not None and whole.group(1) in arguments:
        return arguments[whole.group(1)]

    def replacer(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in arguments:
            return str(arguments[name])
        return match.group(0)  # Keep original if not found

    return _PLACEHOLDER.sub(replacer, segment)


def _without_receiver(arguments: dict[str, Any]) -> dict[str, Any]:
    """Drop a leading ``self``/``cls`` argument from bound method arguments."""
    names = list(arguments)
    if names and names[0] in _RECEIVERS:
        return {name: arguments[name] for name in names[1:]}
    return arguments
