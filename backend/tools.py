import asyncio
import json
import logging
from typing import Callable

from session import CallSession, OrderLine, format_price
from store import RecordStore

logger = logging.getLogger("ivr.tools")

TOOL_SCHEMAS = [
    {
        "type": "function",
        "name": "add_order_item",
        "description": (
            "Add an item to the current order. After this succeeds, briefly confirm "
            "(e.g. 'Got it, one margherita'). Then ask 'Anything else?' Do NOT recap the "
            "full order unless the caller asks."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "item_name": {"type": "string", "description": "Name of the menu item"},
                "quantity": {"type": "number", "description": "Quantity to order", "default": 1},
                "modifications": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Any modifications or special requests",
                },
            },
            "required": ["item_name"],
        },
    },
    {
        "type": "function",
        "name": "confirm_order",
        "description": (
            "Finalize and submit the order. Only call this AFTER reading back the complete "
            "order to the caller and receiving their explicit confirmation."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "delivery_address": {"type": "string", "description": "Delivery address if applicable"},
            },
        },
    },
    {
        "type": "function",
        "name": "make_reservation",
        "description": "Make a reservation at the restaurant.",
        "parameters": {
            "type": "object",
            "properties": {
                "guest_name": {"type": "string", "description": "Name for the reservation"},
                "date": {"type": "string", "description": "Date in YYYY-MM-DD format"},
                "time": {"type": "string", "description": "Time in HH:MM format (24h)"},
                "guest_count": {"type": "number", "description": "Number of guests"},
                "special_requests": {"type": "string", "description": "Any special requests"},
            },
            "required": ["guest_name", "date", "time", "guest_count"],
        },
    },
    {
        "type": "function",
        "name": "lookup_menu",
        "description": "Look up menu items. Use when the caller asks about the menu or specific items.",
        "parameters": {
            "type": "object",
            "properties": {
                "category": {
                    "type": "string",
                    "description": "Category to filter by (e.g., appetizers, mains, desserts)",
                },
                "search": {"type": "string", "description": "Search term to find specific items"},
            },
        },
    },
    {
        "type": "function",
        "name": "get_current_order",
        "description": (
            "Get the current order items and running total. Use this silently if you need to "
            "check what has been ordered so far instead of asking the caller to repeat themselves."
        ),
        "parameters": {"type": "object", "properties": {}},
    },
]

STORE_FAILURE = "Sorry, I couldn't complete that right now. Please try again in a moment."


def parse_arguments(raw) -> dict:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("[TOOL] Unparseable arguments: %.200s", raw)
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _positive_int(value, default: int = 1) -> int:
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def _text(value) -> str:
    return str(value).strip() if value is not None else ""


class ToolDispatcher:
    def __init__(self, store: RecordStore, session: CallSession,
                 defer: Callable[..., None] | None = None):
        self.store = store
        self.session = session
        # defer(fn, *args, what=...) schedules a fire-and-forget store write
        self.defer = defer or (lambda fn, *args, **kwargs: None)
        self._handlers = {
            "add_order_item": self.add_order_item,
            "confirm_order": self.confirm_order,
            "make_reservation": self.make_reservation,
            "lookup_menu": self.lookup_menu,
            "get_current_order": self.get_current_order,
        }

    async def dispatch(self, name: str, arguments) -> str:
        """Run a tool. Failures come back as a sentence, never as an exception."""
        handler = self._handlers.get(name)
        if handler is None:
            logger.warning("[TOOL] Unknown function %s", name)
            return "Function not recognized."
        args = parse_arguments(arguments)
        logger.info("[TOOL] %s call_sid=%s args=%s", name, self.session.call_sid or "n/a", args)
        try:
            return await handler(args)
        except Exception:
            logger.exception("[TOOL] %s failed call_sid=%s", name, self.session.call_sid or "n/a")
            return STORE_FAILURE

    def _mark_call_type(self, call_type: str) -> None:
        if self.session.call_log_id:
            self.defer(self.store.update_call_log, self.session.call_log_id,
                       type=call_type, what="call log type")

    # ── Tools ──────────────────────────────────────────────────────────────────
    async def add_order_item(self, args: dict) -> str:
        item_name = _text(args.get("item_name"))
        if not item_name or self.session.restaurant_id is None:
            return f'Sorry, I couldn\'t find "{item_name}" on our menu. Could you try again?'

        item = await asyncio.to_thread(self.store.find_menu_item, self.session.restaurant_id, item_name)
        if item is None:
            return f'Sorry, I couldn\'t find "{item_name}" on our menu. Could you try again?'

        qty = _positive_int(args.get("quantity"))
        mods = args.get("modifications")
        if isinstance(mods, str):
            mods = [mods]
        elif not isinstance(mods, list):
            mods = None
        self.session.order_lines.append(OrderLine(
            name=item.name,
            quantity=qty,
            unit_price=item.price,
            modifications=[str(m) for m in mods] if mods else None,
        ))
        return (
            f"Added {qty}x {item.name} ({format_price(item.price)} each). "
            f"Current order total: {format_price(self.session.order_total())}. "
            f"Items in order: {self.session.order_summary()}"
        )

    async def confirm_order(self, args: dict) -> str:
        lines = self.session.order_lines
        if not lines:
            return "There are no items in the current order to confirm."

        total = round(self.session.order_total(), 2)
        order_id = await asyncio.to_thread(
            self.store.add_order,
            self.session.call_log_id,
            self.session.restaurant_id,
            [line.to_dict() for line in lines],
            total,
            _text(args.get("delivery_address")) or None,
        )
        count = len(lines)
        self.session.confirmed_order_id = order_id
        self.session.order_lines = []
        self._mark_call_type("order")
        logger.info("[TOOL] Order %s saved call_sid=%s total=%.2f", order_id, self.session.call_sid or "n/a", total)
        return f"Order confirmed! {count} items, total: {format_price(total)}. Order ID: {order_id}"

    async def make_reservation(self, args: dict) -> str:
        guest_name = _text(args.get("guest_name"))
        date = _text(args.get("date"))
        time = _text(args.get("time"))
        guest_count = _positive_int(args.get("guest_count"))

        await asyncio.to_thread(
            self.store.add_reservation,
            self.session.call_log_id,
            self.session.restaurant_id,
            guest_name,
            date,
            time,
            guest_count,
            _text(args.get("special_requests")) or None,
        )
        self._mark_call_type("reservation")
        return f"Reservation confirmed for {guest_name}, party of {guest_count}, on {date} at {time}."

    async def lookup_menu(self, args: dict) -> str:
        if self.session.restaurant_id is None:
            return "No matching menu items found."
        items = await asyncio.to_thread(
            self.store.list_menu_items,
            self.session.restaurant_id,
            _text(args.get("category")) or None,
            _text(args.get("search")) or None,
        )
        if not items:
            return "No matching menu items found."
        return "; ".join(
            f"{i.name} - {format_price(i.price)}" + (f": {i.description}" if i.description else "")
            for i in items
        )

    async def get_current_order(self, args: dict) -> str:
        if not self.session.order_lines:
            return "No items in the current order yet."
        return (
            f"Current order: {self.session.order_summary(with_prices=True)}. "
            f"Total: {format_price(self.session.order_total())}"
        )
