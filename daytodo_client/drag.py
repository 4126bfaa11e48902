"""Drag interaction controller.

Turns raw pointer/touch events into "drop task A onto B" intents. The
controller knows nothing about rendering: the shell supplies the current
bounding boxes of every droppable (tasks and the two list zones) and feeds
pointer events with timestamps. It never touches task state; a finished
drag only yields a DragIntent, optionally passed to `on_intent`.
"""
import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from .config import DEFAULTS, Config

logger = logging.getLogger(__name__)


class PointerKind(str, Enum):
    POINTER = 'pointer'
    TOUCH = 'touch'


class DragPhase(Enum):
    IDLE = 'idle'
    DRAGGING = 'dragging'


@dataclass(frozen=True)
class Rect:
    left: float
    top: float
    width: float
    height: float

    @property
    def corners(self) -> Tuple[Tuple[float, float], ...]:
        r, b = self.left + self.width, self.top + self.height
        return ((self.left, self.top), (r, self.top), (self.left, b), (r, b))

    def translated(self, dx: float, dy: float) -> 'Rect':
        return Rect(self.left + dx, self.top + dy, self.width, self.height)

    def intersects(self, other: 'Rect') -> bool:
        return (
            self.left < other.left + other.width and other.left < self.left + self.width
            and self.top < other.top + other.height and other.top < self.top + self.height
        )


@dataclass(frozen=True)
class DragIntent:
    active_id: str
    target_id: str


@dataclass
class Press:
    """A pointer-down that has not yet met its activation constraint."""
    item_id: str
    kind: PointerKind
    x: float
    y: float
    at: float


@dataclass
class DragState:
    phase: DragPhase = DragPhase.IDLE
    press: Optional[Press] = None
    active_id: Optional[str] = None
    origin: Optional[Rect] = None
    delta: Tuple[float, float] = field(default=(0.0, 0.0))
    over_id: Optional[str] = None


def corner_distance(a: Rect, b: Rect) -> float:
    """Sum of distances between the matching corners of two rectangles."""
    return sum(math.hypot(ax - bx, ay - by) for (ax, ay), (bx, by) in zip(a.corners, b.corners))


def closest_corners(rect: Rect, candidates: Dict[str, Rect]) -> Optional[str]:
    """Id of the candidate whose corners are nearest to `rect`'s corners.

    Returns None when `rect` overlaps none of the candidates, i.e. it was
    dragged outside every drop zone.
    """
    if not any(rect.intersects(c) for c in candidates.values()):
        return None
    best_id, best = None, math.inf
    for cid, crect in candidates.items():
        d = corner_distance(rect, crect)
        if d < best:
            best_id, best = cid, d
    return best_id


class DragController:
    def __init__(
        self,
        droppables: Callable[[], Dict[str, Rect]],
        *,
        on_intent: Optional[Callable[[DragIntent], object]] = None,
        config: Optional[Config] = None,
        activation_distance: Optional[float] = None,
        touch_delay: Optional[float] = None,
        touch_tolerance: Optional[float] = None,
    ):
        self.droppables = droppables
        self.on_intent = on_intent
        self.activation_distance = _pick(activation_distance, config, 'activation_distance')
        self.touch_delay = _pick(touch_delay, config, 'touch_delay')
        self.touch_tolerance = _pick(touch_tolerance, config, 'touch_tolerance')
        self.state = DragState()

    @property
    def phase(self) -> DragPhase:
        return self.state.phase

    @property
    def over_id(self) -> Optional[str]:
        return self.state.over_id

    def pointer_down(self, item_id: str, x: float, y: float, now: Optional[float] = None, kind: PointerKind = PointerKind.POINTER) -> None:
        if self.state.phase is not DragPhase.IDLE:
            return
        self.state = DragState(press=Press(item_id, PointerKind(kind), x, y, _now(now)))

    def pointer_move(self, x: float, y: float, now: Optional[float] = None) -> Optional[str]:
        """Feed a move; returns the live drop target while dragging."""
        now = _now(now)
        st = self.state
        if st.phase is DragPhase.DRAGGING:
            p = st.press
            st.delta = (x - p.x, y - p.y)
            st.over_id = self._resolve_target()
            return st.over_id
        press = st.press
        if press is None:
            return None
        travel = math.hypot(x - press.x, y - press.y)
        if press.kind is PointerKind.TOUCH:
            if now - press.at < self.touch_delay:
                if travel > self.touch_tolerance:
                    # moved too early: this is a scroll, not a drag
                    self.state = DragState()
                return None
            self._activate((x - press.x, y - press.y))
        elif travel >= self.activation_distance:
            self._activate((x - press.x, y - press.y))
        return self.state.over_id

    def tick(self, now: Optional[float] = None) -> bool:
        """Let a held touch press activate without further movement."""
        press = self.state.press
        if self.state.phase is DragPhase.IDLE and press is not None and press.kind is PointerKind.TOUCH:
            if _now(now) - press.at >= self.touch_delay:
                self._activate((0.0, 0.0))
        return self.state.phase is DragPhase.DRAGGING

    def _activate(self, delta: Tuple[float, float]) -> None:
        press = self.state.press
        rects = self.droppables()
        origin = rects.get(press.item_id)
        if origin is None:
            logger.debug('press on %s ignored: not a droppable', press.item_id)
            self.state = DragState()
            return
        self.state = DragState(phase=DragPhase.DRAGGING, press=press, active_id=press.item_id, origin=origin, delta=delta)
        self.state.over_id = self._resolve_target(rects)

    def _resolve_target(self, rects: Optional[Dict[str, Rect]] = None, st: Optional[DragState] = None) -> Optional[str]:
        st = st or self.state
        rects = self.droppables() if rects is None else rects
        if not rects:
            return None
        return closest_corners(st.origin.translated(*st.delta), rects)

    def drop(self) -> Optional[DragIntent]:
        """Pointer released. Always returns to IDLE.

        Yields an intent only for a real move: an active drag with a target
        other than the dragged item.
        """
        st = self.state
        self.state = DragState()
        if st.phase is not DragPhase.DRAGGING:
            return None
        target = self._resolve_target(st=st)
        if target is None or target == st.active_id:
            return None
        intent = DragIntent(st.active_id, target)
        if self.on_intent is not None:
            self.on_intent(intent)
        return intent

    def cancel(self) -> None:
        self.state = DragState()


def _now(now: Optional[float]) -> float:
    return time.monotonic() if now is None else now


def _pick(explicit: Optional[float], config: Optional[Config], key: str) -> float:
    if explicit is not None:
        return float(explicit)
    if config is not None:
        return float(config.get(key))
    return float(DEFAULTS[key])
