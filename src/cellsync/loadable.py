"""Loadable — the tri-state container for cell contents.

A Loadable is exactly one of:
- HAS_VALUE: a settled value
- HAS_ERROR: an error payload (usually an exception)
- LOADING: a future that will settle later

Every place that consumes a Loadable branches on .state explicitly.
Loading contents may be a concurrent.futures.Future or an asyncio.Future;
only add_done_callback/cancelled/exception/result are used.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")


class LoadableState(Enum):
    HAS_VALUE = "hasValue"
    HAS_ERROR = "hasError"
    LOADING = "loading"


class DefaultValue:
    """Marker meaning "use the cell's declared default"."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "DEFAULT_VALUE"


DEFAULT_VALUE = DefaultValue()


@dataclass(frozen=True)
class Loadable(Generic[T]):
    state: LoadableState
    contents: Any

    @classmethod
    def of(cls, value: T) -> Loadable[T]:
        return cls(LoadableState.HAS_VALUE, value)

    @classmethod
    def error(cls, error: Any) -> Loadable[T]:
        return cls(LoadableState.HAS_ERROR, error)

    @classmethod
    def loading(cls, future) -> Loadable[T]:
        return cls(LoadableState.LOADING, future)

    @property
    def has_value(self) -> bool:
        return self.state is LoadableState.HAS_VALUE

    @property
    def has_error(self) -> bool:
        return self.state is LoadableState.HAS_ERROR

    @property
    def is_loading(self) -> bool:
        return self.state is LoadableState.LOADING

    def value_or(self, default: T | None = None) -> T | None:
        return self.contents if self.has_value else default

    def map(self, fn: Callable[[T], U | Loadable[U]]) -> Loadable[U]:
        """Transform the value branch; error and loading provenance is kept.

        fn may return a Loadable, which is flattened. An exception raised by
        fn becomes an error-state Loadable.
        """
        if self.state is LoadableState.HAS_VALUE:
            return _apply(fn, self.contents)
        if self.state is LoadableState.HAS_ERROR:
            return self
        if self.state is LoadableState.LOADING:
            return Loadable.loading(_chain(self.contents, fn))
        raise ValueError(f"Unknown loadable state: {self.state!r}")

    def __repr__(self) -> str:
        return f"Loadable({self.state.value}, {self.contents!r})"


def is_loadable(obj: object) -> bool:
    return isinstance(obj, Loadable)


def _apply(fn: Callable, value) -> Loadable:
    try:
        result = fn(value)
    except Exception as exc:
        return Loadable.error(exc)
    return result if isinstance(result, Loadable) else Loadable.of(result)


def _new_future_like(source):
    if isinstance(source, asyncio.Future):
        return source.get_loop().create_future()
    return concurrent.futures.Future()


def _chain(source, fn: Callable):
    """Derived future resolving with fn applied to source's result."""
    derived = _new_future_like(source)
    source.add_done_callback(_resolver(derived, fn))
    return derived


def _resolver(derived, fn: Callable):
    def _settle(done) -> None:
        if derived.done():
            return
        if done.cancelled():
            derived.cancel()
            return
        exc = done.exception()
        if exc is not None:
            derived.set_exception(exc)
            return
        mapped = _apply(fn, done.result())
        if mapped.state is LoadableState.HAS_VALUE:
            derived.set_result(mapped.contents)
        elif mapped.state is LoadableState.HAS_ERROR:
            error = mapped.contents
            derived.set_exception(error if isinstance(error, BaseException) else RuntimeError(error))
        else:
            # fn returned another loading value; follow it without re-applying fn
            mapped.contents.add_done_callback(_resolver(derived, _identity))

    return _settle


def _identity(value):
    return value
