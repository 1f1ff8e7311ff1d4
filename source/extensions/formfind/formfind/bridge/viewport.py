"""
Viewport bridge — pointer and camera events for interactive dragging.

The solver owns no input device.  A host viewport (or anything that
implements the :class:`Viewport` protocol) publishes five kinds of
events and answers camera-basis queries; the solver subscribes on
:meth:`~formfind.kernel.solver.Solver.attach_viewport` and unsubscribes
on ``detach_viewport`` / ``dispose``.

Payloads:

* ``POINTER_DOWN`` / ``POINTER_MOVE`` / ``POINTER_UP``: :class:`PointerEvent`
* ``CAMERA_CHANGED``: ``None`` (or the new :class:`CameraBasis`)
* ``NAVIGATION_CHANGED``: ``bool`` (whether background navigation is on)

:class:`ViewportEvents` is a small in-process implementation used by
headless hosts and tests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional, Protocol

from ..kernel.picking import CameraBasis, Ray

logger = logging.getLogger(__name__)


class ViewportEvent(Enum):
    POINTER_DOWN = auto()
    POINTER_MOVE = auto()
    POINTER_UP = auto()
    CAMERA_CHANGED = auto()
    NAVIGATION_CHANGED = auto()


@dataclass(frozen=True)
class PointerEvent:
    """A pointer event: the current ray (if known) and left-button state."""
    ray: Optional[Ray] = None
    left_button: bool = False


Handler = Callable[[Any], None]


class Viewport(Protocol):
    """What the solver needs from a host viewport."""

    def subscribe(self, event: ViewportEvent, handler: Handler) -> None: ...

    def unsubscribe(self, event: ViewportEvent, handler: Handler) -> None: ...

    def get_camera_basis(self) -> CameraBasis: ...


class ViewportEvents:
    """
    In-process event hub implementing :class:`Viewport`.

    Usage::

        viewport = ViewportEvents(CameraBasis.of((0, 1, 0), (0, 0, 1)))
        solver.attach_viewport(viewport)
        viewport.pointer_move(Ray.of((0, -10, 0), (0, 1, 0)))
        viewport.pointer_down(Ray.of((0, -10, 0), (0, 1, 0)))
    """

    def __init__(self, camera: Optional[CameraBasis] = None):
        self._handlers: Dict[ViewportEvent, List[Handler]] = {e: [] for e in ViewportEvent}
        self._camera = camera or CameraBasis.of((0.0, 1.0, 0.0), (0.0, 0.0, 1.0))

    # -- Viewport protocol ------------------------------------------------------

    def subscribe(self, event: ViewportEvent, handler: Handler):
        self._handlers[event].append(handler)

    def unsubscribe(self, event: ViewportEvent, handler: Handler):
        try:
            self._handlers[event].remove(handler)
        except ValueError:
            logger.debug("Handler %r was not subscribed to %s", handler, event.name)

    def get_camera_basis(self) -> CameraBasis:
        return self._camera

    # -- Publishing -------------------------------------------------------------

    def handler_count(self, event: ViewportEvent) -> int:
        return len(self._handlers[event])

    def emit(self, event: ViewportEvent, payload: Any = None):
        for handler in list(self._handlers[event]):
            handler(payload)

    def pointer_down(self, ray: Optional[Ray] = None, left_button: bool = True):
        self.emit(ViewportEvent.POINTER_DOWN, PointerEvent(ray, left_button))

    def pointer_move(self, ray: Ray, left_button: bool = False):
        self.emit(ViewportEvent.POINTER_MOVE, PointerEvent(ray, left_button))

    def pointer_up(self, ray: Optional[Ray] = None):
        self.emit(ViewportEvent.POINTER_UP, PointerEvent(ray, False))

    def set_camera(self, camera: CameraBasis):
        """Replace the camera and notify subscribers."""
        self._camera = camera
        self.emit(ViewportEvent.CAMERA_CHANGED, camera)

    def navigation_changed(self, can_navigate: bool):
        self.emit(ViewportEvent.NAVIGATION_CHANGED, can_navigate)
