"""Validation — turn an untyped external Loadable into a typed one."""

from __future__ import annotations

from typing import Any, Callable

from cellsync.loadable import DEFAULT_VALUE, DefaultValue, Loadable


def validate(loadable: Loadable, restore: Callable[[Any], Any]) -> Loadable[Any | DefaultValue]:
    """Apply restore to the value branch of loadable.

    Error and loading provenance is kept: restore never sees an error, and a
    loading input yields a loading result that validates once it settles.
    A restore result of None means "no match" and becomes DEFAULT_VALUE.
    """
    return loadable.map(lambda raw: _or_default(restore(raw)))


def _or_default(restored):
    if restored is None:
        return DEFAULT_VALUE
    if isinstance(restored, Loadable):
        return restored.map(_or_default)
    return restored
