"""Exclusive selection and viewport focus events."""

from __future__ import annotations

import logging
from collections.abc import Callable

from transitpresence.models.position import Coordinate
from transitpresence.models.view import FocusEvent, Selection, SelectionKind

_logger = logging.getLogger(__name__)

Locator = Callable[[Selection], Coordinate | None]
FocusListener = Callable[[FocusEvent], None]
SelectionListener = Callable[[Selection], None]


class SelectionCoordinator:
    """Holds at most one selected bus or driver.

    *locate* resolves a selection to a coordinate, usually
    :meth:`StreamMerger.locate`. Each change to a located selection emits a
    :class:`FocusEvent` for the viewport.
    """

    def __init__(self, locate: Locator, *, zoom_hint: int = 15) -> None:
        self._locate = locate
        self._zoom_hint = zoom_hint
        self._selection = Selection.none()
        self._focus_listeners: list[FocusListener] = []
        self._selection_listeners: list[SelectionListener] = []

    @property
    def selection(self) -> Selection:
        return self._selection

    def on_focus(self, callback: FocusListener) -> Callable[[], None]:
        """Subscribe to focus events. Returns an unsubscribe callable."""
        self._focus_listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._focus_listeners:
                self._focus_listeners.remove(callback)

        return _unsubscribe

    def on_change(self, callback: SelectionListener) -> Callable[[], None]:
        self._selection_listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._selection_listeners:
                self._selection_listeners.remove(callback)

        return _unsubscribe

    def select(self, kind: SelectionKind | str, entity_id: str | None = None) -> Selection:
        """Select an entity, replacing any previous selection.

        ``select(SelectionKind.NONE)`` clears.
        """
        selection = Selection(kind=SelectionKind(kind), entity_id=entity_id)
        if selection == self._selection:
            return self._selection

        _logger.debug("Selection %s -> %s", self._selection, selection)
        self._selection = selection
        for listener in list(self._selection_listeners):
            listener(selection)

        if selection.is_active:
            coordinate = self._locate(selection)
            if coordinate is not None:
                event = FocusEvent(coordinate=coordinate, zoom_hint=self._zoom_hint, selection=selection)
                for focus_listener in list(self._focus_listeners):
                    focus_listener(event)
        return selection

    def clear(self) -> Selection:
        return self.select(SelectionKind.NONE)
