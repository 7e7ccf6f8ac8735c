"""
Event bus for observing a transaction-chain build.

This module provides:
- EventType enum for type-safe event identification
- Event dataclass for structured event data
- EventBus class for async pub/sub event handling

The orchestrator emits progress events (validation, UTXO fetch, each fee
iteration, completion or failure) so callers can report progress without
the builder knowing about any frontend.
"""

import asyncio
import logging
from enum import Enum, auto
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Awaitable
from datetime import datetime

logger = logging.getLogger('preinscribe.events')


class EventType(Enum):
    """Enumeration of all events emitted while building a purchase chain."""
    # Seller PSBT validation
    VALIDATION_STARTED = auto()
    VALIDATION_COMPLETE = auto()

    # Buyer funds
    UTXOS_FETCHED = auto()

    # Transaction building
    TX_BUILD_STARTED = auto()
    FEE_ITERATION = auto()
    TX_BUILD_COMPLETE = auto()
    TX_BUILD_ERROR = auto()


@dataclass
class Event:
    """
    Structured event data.

    Attributes:
        event_type: Type of event (from EventType enum)
        data: Event-specific payload (optional)
        timestamp: When the event was created
        source: Optional identifier for event source (e.g., "validator", "builder")
    """
    event_type: EventType
    data: Optional[Dict[str, Any]] = None
    timestamp: datetime = field(default_factory=datetime.now)
    source: Optional[str] = None

    def __str__(self) -> str:
        data_preview = ""
        if self.data:
            keys = list(self.data.keys())[:2]
            data_preview = f" ({', '.join(keys)}...)" if keys else ""

        source_info = f" from {self.source}" if self.source else ""
        return f"Event({self.event_type.name}{data_preview}{source_info})"


# Async callback receiving an Event
EventHandler = Callable[[Event], Awaitable[None]]


class EventBus:
    """
    Async event bus for pub/sub event handling.

    Handlers for one event run concurrently; a failing handler is logged
    and never affects the other handlers or the emitter.

    Example:
        >>> bus = EventBus()
        >>>
        >>> async def on_iteration(event: Event):
        ...     print(f"CPFP funding: {event.data['cpfp_funding']}")
        >>>
        >>> bus.on(EventType.FEE_ITERATION, on_iteration)
    """

    def __init__(self):
        self._handlers: Dict[EventType, List[EventHandler]] = {}

    def on(self, event_type: EventType, handler: EventHandler) -> None:
        """
        Register an event handler for a specific event type.

        Args:
            event_type: Type of event to listen for
            handler: Async callback function to handle the event
        """
        self._handlers.setdefault(event_type, []).append(handler)

    def off(self, event_type: EventType, handler: EventHandler) -> bool:
        """
        Unregister an event handler.

        Returns:
            True if handler was found and removed, False otherwise
        """
        if event_type not in self._handlers:
            return False

        try:
            self._handlers[event_type].remove(handler)
        except ValueError:
            return False

        if not self._handlers[event_type]:
            del self._handlers[event_type]
        return True

    def clear(self, event_type: Optional[EventType] = None) -> None:
        """Clear all handlers for an event type, or every handler if None."""
        if event_type is None:
            self._handlers.clear()
        else:
            self._handlers.pop(event_type, None)

    async def emit(self, event: Event) -> None:
        """
        Emit an event to all registered handlers.

        Args:
            event: Event to emit
        """
        handlers = list(self._handlers.get(event.event_type, []))
        if handlers:
            await asyncio.gather(*(self._safe_call_handler(h, event) for h in handlers))

    async def _safe_call_handler(self, handler: EventHandler, event: Event) -> None:
        try:
            await handler(event)
        except Exception as e:
            logger.error(f"Error in event handler for {event.event_type.name}: {e}")

    def has_handlers(self, event_type: EventType) -> bool:
        return bool(self._handlers.get(event_type))

    def handler_count(self, event_type: Optional[EventType] = None) -> int:
        """
        Get the number of registered handlers.

        Args:
            event_type: Event type to count handlers for (None = count all)
        """
        if event_type is None:
            return sum(len(handlers) for handlers in self._handlers.values())
        return len(self._handlers.get(event_type, []))


# Convenience functions for creating common events

def create_validation_complete_event(inscription_ids: List[str]) -> Event:
    """Create a VALIDATION_COMPLETE event."""
    return Event(
        EventType.VALIDATION_COMPLETE,
        {'count': len(inscription_ids), 'inscription_ids': inscription_ids},
        source='validator'
    )


def create_utxos_fetched_event(address: str, utxo_count: int, total_value: int) -> Event:
    """Create a UTXOS_FETCHED event."""
    return Event(
        EventType.UTXOS_FETCHED,
        {'address': address, 'utxo_count': utxo_count, 'total_value': total_value},
        source='builder'
    )


def create_fee_iteration_event(
    iteration: int,
    cpfp_funding: int,
    total_vbytes: float,
    total_fee: int,
    extra_funding: int
) -> Event:
    """Create a FEE_ITERATION event."""
    return Event(
        EventType.FEE_ITERATION,
        {
            'iteration': iteration,
            'cpfp_funding': cpfp_funding,
            'total_vbytes': total_vbytes,
            'total_fee': total_fee,
            'extra_funding': extra_funding,
        },
        source='builder'
    )


def create_tx_build_error_event(error: Exception) -> Event:
    """Create a TX_BUILD_ERROR event."""
    return Event(
        EventType.TX_BUILD_ERROR,
        {'error': str(error), 'error_type': type(error).__name__},
        source='builder'
    )
