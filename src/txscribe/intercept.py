from __future__ import annotations

import functools
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import ScenarioUsageError
from .interfaces import SubmissionPoint
from .types import PendingCall

logger = logging.getLogger(__name__)

__all__ = ["SubmissionInterceptor"]

_MISSING = object()


class _Dispatcher:
    """The single wrapper installed on one (owner, attribute) pair.

    Every interceptor registered on the point sees each submission. The attribute
    is put back only when the last interceptor leaves: the original object when it
    lived on the instance, nothing at all when it was looked up from the class.
    """

    def __init__(self, owner: Any, attribute: str):
        self.owner = owner
        self.attribute = attribute
        self.listeners: List["SubmissionInterceptor"] = []
        self._own_value = getattr(owner, "__dict__", {}).get(attribute, _MISSING)
        self._original = getattr(owner, attribute)
        setattr(owner, attribute, self._wrap(self._original))

    def _notify(self, args, kwargs, result) -> None:
        for listener in list(self.listeners):
            listener._observe(args, kwargs, result)

    def _wrap(self, original):
        if inspect.iscoroutinefunction(original):

            @functools.wraps(original)
            async def async_wrapper(*args, **kwargs):
                result = await original(*args, **kwargs)
                self._notify(args, kwargs, result)
                return result

            return async_wrapper

        @functools.wraps(original)
        def wrapper(*args, **kwargs):
            result = original(*args, **kwargs)
            self._notify(args, kwargs, result)
            return result

        return wrapper

    def restore(self) -> None:
        if self._own_value is _MISSING:
            delattr(self.owner, self.attribute)
        else:
            setattr(self.owner, self.attribute, self._own_value)


# Keyed by id(owner); the dispatcher holds the owner, so the id stays valid while it is listed.
_dispatchers: Dict[Tuple[int, str], _Dispatcher] = {}


class SubmissionInterceptor:
    """Observes every transaction sent through a submission entrypoint.

    The wrapper always delegates to the captured original and hands its return
    value back untouched. Scenarios open on the same chain share one wrapper, so
    they may end in any order.
    """

    def __init__(self, point: SubmissionPoint, on_submit: Callable[[PendingCall], None]):
        self.point = point
        self.on_submit = on_submit
        self.installed = False

    @property
    def _key(self) -> Tuple[int, str]:
        return id(self.point.owner), self.point.attribute

    def _observe(self, args, kwargs, result) -> None:
        pending: Optional[PendingCall] = self.point.extract(args, kwargs, result)
        if pending is None:
            return
        logger.debug("txscribe: Intercepted transaction %s to %s", pending.tx_hash, pending.to)
        self.on_submit(pending)

    def install(self) -> None:
        if self.installed:
            raise ScenarioUsageError(f"Submission point '{self.point.attribute}' is already intercepted")
        dispatcher = _dispatchers.get(self._key)
        if dispatcher is None:
            dispatcher = _dispatchers[self._key] = _Dispatcher(self.point.owner, self.point.attribute)
        dispatcher.listeners.append(self)
        self.installed = True

    def uninstall(self) -> None:
        if not self.installed:
            return
        self.installed = False
        dispatcher = _dispatchers[self._key]
        dispatcher.listeners.remove(self)
        if not dispatcher.listeners:
            del _dispatchers[self._key]
            dispatcher.restore()
