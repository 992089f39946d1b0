"""Reassembles streamed tool-call fragments into complete tool calls."""

from loguru import logger

from chatrelay.providers.base import FunctionCall, ToolCallFragment, ToolCallRequest
from chatrelay.utils.helpers import generate_call_id


class ToolCallAccumulator:
    """Merges the tool-call fragments of one streamed turn.

    Fragments are routed to a slot by their ``index``. Within a slot the first
    fragment, or any fragment whose function name differs from the name seen
    so far, starts a fresh call; every other fragment appends its argument
    text to the slot. A fragment with no index goes to the slot touched last.
    Argument text is only ever appended, so in-order delivery per index is
    assumed.
    """

    def __init__(self) -> None:
        self._slots: dict[int, ToolCallRequest] = {}
        self._last_index: int | None = None

    def add(self, fragment: ToolCallFragment) -> ToolCallRequest:
        if fragment.index is not None:
            index = fragment.index
        elif self._last_index is not None:
            index = self._last_index
        else:
            index = 0

        current = self._slots.get(index)
        if current is None or (
            fragment.name and current.function.name and fragment.name != current.function.name
        ):
            if current is not None:
                logger.debug(
                    "Tool call name changed at index {} ({} -> {}), resetting",
                    index,
                    current.function.name,
                    fragment.name,
                )
            current = ToolCallRequest(
                id=fragment.id or generate_call_id(),
                index=index,
                type=fragment.type or "function",
                function=FunctionCall(name=fragment.name or "", arguments=fragment.arguments or ""),
            )
            self._slots[index] = current
        else:
            if fragment.name:
                current.function.name = fragment.name
            if fragment.arguments:
                current.function.arguments += fragment.arguments

        self._last_index = index
        return current

    def get(self) -> ToolCallRequest | None:
        """The most recently touched call, or None before any fragment."""
        if self._last_index is None:
            return None
        return self._slots.get(self._last_index)

    def calls(self) -> list[ToolCallRequest]:
        """All calls that have a function name, ordered by index."""
        return [self._slots[i] for i in sorted(self._slots) if self._slots[i].function.name]

    def reset(self) -> None:
        self._slots.clear()
        self._last_index = None

    def __bool__(self) -> bool:
        return bool(self._slots)
