"""
Drag-and-drop controller for the form schema builder.

Turns one gesture (start, any number of moves, then end or cancel) into at
most one schema store call. A gesture lifts either a palette blueprint, which
is added on drop, or an existing field, which is reordered among its
siblings. Everything the controller tracks between events is transient and
never reaches the store's history.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from form_builder.models import FieldBlueprint
from form_builder.schema_store import SchemaStore
from form_builder.schema_tree import leaf_key, normalize_path, ordered_keys, parent_path, resolve

logger = logging.getLogger(__name__)

DEFAULT_ACTIVATION_DISTANCE = 8

Position = Tuple[float, float]


class DragState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    DRAGGING_NEW = "dragging_new"
    DRAGGING_EXISTING = "dragging_existing"


@dataclass(frozen=True)
class DragSource:
    """What a gesture lifted: a palette blueprint or an existing field."""
    kind: str
    key: str

    @classmethod
    def palette(cls, blueprint_key: str) -> "DragSource":
        return cls("palette", blueprint_key)

    @classmethod
    def field(cls, path: str) -> "DragSource":
        return cls("field", normalize_path(path))

    @property
    def is_palette(self) -> bool:
        return self.kind == "palette"


@dataclass(frozen=True)
class DropTarget:
    """
    Region under the pointer.

    ``canvas`` is the root drop zone, ``container`` the body of a section or
    repeating section, ``field`` an existing field used as an anchor, and
    ``palette`` the palette itself, which never accepts drops.
    """
    kind: str
    path: str = ""

    @classmethod
    def canvas(cls) -> "DropTarget":
        return cls("canvas")

    @classmethod
    def container(cls, path: str) -> "DropTarget":
        return cls("container", normalize_path(path))

    @classmethod
    def field(cls, path: str) -> "DropTarget":
        return cls("field", normalize_path(path))

    @classmethod
    def palette(cls) -> "DropTarget":
        return cls("palette")


@dataclass(frozen=True)
class DropResult:
    """Outcome of a finished gesture: ``added``, ``reordered``, ``selected`` or ``none``."""
    action: str
    path: Optional[str] = None

    @property
    def changed_schema(self) -> bool:
        return self.action in ("added", "reordered")


_LAST_CANDIDATE = object()


class DragController:
    """
    Four-event gesture state machine over one schema store.

    States: IDLE -> PENDING on gesture start; PENDING -> DRAGGING_NEW or
    DRAGGING_EXISTING once the pointer travels past the activation distance
    (or on a keyboard step); any state -> IDLE on end or cancel.
    """

    def __init__(self, store: SchemaStore, activation_distance: float = DEFAULT_ACTIVATION_DISTANCE):
        self.store = store
        self.activation_distance = activation_distance
        self._reset()

    def _reset(self) -> None:
        self.state = DragState.IDLE
        self.source: Optional[DragSource] = None
        self.origin: Optional[Position] = None
        self.candidate_target: Optional[DropTarget] = None
        self.candidate_valid = False
        self.active_blueprint: Optional[FieldBlueprint] = None

    @property
    def is_dragging(self) -> bool:
        return self.state in (DragState.DRAGGING_NEW, DragState.DRAGGING_EXISTING)

    @property
    def show_overlay(self) -> bool:
        """True while a palette blueprint is being dragged and its preview should follow the pointer."""
        return self.state == DragState.DRAGGING_NEW and self.active_blueprint is not None

    # ------------------------------------------------------------------
    # Gesture events
    # ------------------------------------------------------------------

    def on_gesture_start(self, source: DragSource, position: Optional[Position] = None) -> bool:
        """
        Press on a palette item or a field.

        Returns:
            True if the gesture was accepted, False if ignored
        """
        if self.state != DragState.IDLE:
            logger.debug(f"Ignoring gesture start on {source}: controller is {self.state.value}")
            return False

        if source.is_palette:
            if source.key not in self.store.catalog:
                logger.warning(f"Ignoring drag of unknown blueprint '{source.key}'")
                return False
        elif not source.key or resolve(self.store.schema, source.key) is None:
            logger.warning(f"Ignoring drag of missing field '{source.key}'")
            return False

        self.state = DragState.PENDING
        self.source = source
        self.origin = position
        logger.debug(f"Gesture pending: {source.kind} '{source.key}'")
        return True

    def on_gesture_move(self, position: Optional[Position] = None,
                        over: Optional[DropTarget] = None) -> None:
        """
        Pointer or keyboard movement.

        A move without a position is a keyboard step and activates the drag
        immediately. ``over`` is the region now under the pointer.
        """
        if self.state == DragState.IDLE:
            return

        if self.state == DragState.PENDING:
            if not self._passes_threshold(position):
                return
            self._activate()

        self.candidate_target = over
        self.candidate_valid = self._plan(over) is not None

    def on_gesture_end(self, over=_LAST_CANDIDATE) -> DropResult:
        """
        Release. Commits at most one store call.

        Args:
            over: Region under the release point. Defaults to the last
                candidate reported by ``on_gesture_move``; None means nothing.

        Returns:
            DropResult describing what happened
        """
        if self.state == DragState.IDLE:
            return DropResult("none")

        target = self.candidate_target if over is _LAST_CANDIDATE else over
        state, source = self.state, self.source
        plan = self._plan(target) if state != DragState.PENDING else None

        # Back to idle before touching the store so a rejected call still ends the gesture
        self._reset()

        if state == DragState.PENDING:
            if source.is_palette:
                return DropResult("none")
            if self.store.get_field(source.key) is None:
                logger.debug(f"Clicked field '{source.key}' no longer exists")
                return DropResult("none")
            self.store.select_field(source.key)
            return DropResult("selected", source.key)

        if plan is None:
            logger.debug(f"Drop of {source.kind} '{source.key}' on {target} discarded")
            return DropResult("none")

        if state == DragState.DRAGGING_NEW:
            parent, index = plan
            path = self.store.add_field(source.key, parent, index)
            return DropResult("added", path)

        parent, keys = plan
        self.store.reorder_fields(parent, keys)
        return DropResult("reordered", source.key)

    def on_gesture_cancel(self) -> bool:
        """Abandon the gesture. Never touches the store."""
        if self.state == DragState.IDLE:
            return False
        logger.debug(f"Gesture cancelled in state {self.state.value}")
        self._reset()
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _passes_threshold(self, position: Optional[Position]) -> bool:
        if position is None or self.origin is None:
            return True
        distance = math.hypot(position[0] - self.origin[0], position[1] - self.origin[1])
        return distance > self.activation_distance

    def _activate(self) -> None:
        if self.source.is_palette:
            self.state = DragState.DRAGGING_NEW
            self.active_blueprint = self.store.catalog.get(self.source.key)
        else:
            self.state = DragState.DRAGGING_EXISTING
        logger.debug(f"Drag activated: {self.state.value} '{self.source.key}'")

    def _plan(self, target: Optional[DropTarget]):
        if self.state == DragState.DRAGGING_NEW:
            return self._plan_add(target)
        if self.state == DragState.DRAGGING_EXISTING:
            return self._plan_reorder(self.source.key, target)
        return None

    def _plan_add(self, target: Optional[DropTarget]) -> Optional[Tuple[str, Optional[int]]]:
        """Container path and index for a new field, or None when the target cannot take it."""
        if target is None or target.kind == "palette":
            return None

        schema = self.store.schema
        if target.kind == "canvas":
            return "", None

        if target.kind == "container":
            node = resolve(schema, target.path)
            if node is None or not node.is_container:
                return None
            return target.path, None

        if target.kind == "field":
            if not target.path or resolve(schema, target.path) is None:
                return None
            parent = parent_path(target.path)
            return parent, ordered_keys(resolve(schema, parent)).index(leaf_key(target.path))

        return None

    def _plan_reorder(self, source_path: str,
                      target: Optional[DropTarget]) -> Optional[Tuple[str, List[str]]]:
        """Parent path and full new sibling order, or None for a no-op drop."""
        if target is None or target.kind != "field" or target.path == source_path:
            return None

        parent = parent_path(source_path)
        if parent_path(target.path) != parent:
            return None

        container = resolve(self.store.schema, parent)
        if container is None:
            return None
        keys = ordered_keys(container)
        source_key, target_key = leaf_key(source_path), leaf_key(target.path)
        if source_key not in keys or target_key not in keys:
            return None

        from_index, to_index = keys.index(source_key), keys.index(target_key)
        if from_index == to_index:
            return None
        keys.pop(from_index)
        keys.insert(to_index, source_key)
        return parent, keys
