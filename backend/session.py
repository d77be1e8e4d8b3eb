import time
from dataclasses import dataclass, field


@dataclass(frozen=True)
class MenuEntry:
    id: int
    name: str
    price: float
    description: str = ""
    category: str = ""
    modifications: tuple = ()


@dataclass(frozen=True)
class RestaurantContext:
    """Restaurant and catalog snapshot resolved once at call start."""
    id: int
    name: str
    cuisine: str = ""
    system_prompt: str = ""
    greeting_message: str = ""
    voice: str = ""
    menu: tuple = ()

    @property
    def greeting(self) -> str:
        return self.greeting_message or f"Welcome to {self.name}! How can I help you today?"


@dataclass
class OrderLine:
    name: str
    quantity: int
    unit_price: float
    modifications: list | None = None

    @property
    def subtotal(self) -> float:
        return self.quantity * self.unit_price

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "quantity": self.quantity,
            "price": self.unit_price,
            "modifications": self.modifications or [],
        }


def format_price(amount: float) -> str:
    return f"${amount:.2f}"


@dataclass
class CallSession:
    call_sid: str = ""
    stream_sid: str = ""
    caller: str = ""
    called: str = ""
    restaurant: RestaurantContext | None = None
    call_log_id: int | None = None
    order_lines: list[OrderLine] = field(default_factory=list)
    response_in_flight: bool = False
    confirmed_order_id: int | None = None
    started_at: float = field(default_factory=time.monotonic)

    @property
    def key(self) -> str:
        return self.call_sid or self.stream_sid

    @property
    def restaurant_id(self) -> int | None:
        return self.restaurant.id if self.restaurant else None

    def order_total(self) -> float:
        return sum(line.subtotal for line in self.order_lines)

    def order_summary(self, with_prices: bool = False) -> str:
        if with_prices:
            return ", ".join(
                f"{line.quantity}x {line.name} ({format_price(line.unit_price)})"
                for line in self.order_lines
            )
        return ", ".join(f"{line.quantity}x {line.name}" for line in self.order_lines)

    def elapsed_seconds(self) -> int:
        return round(time.monotonic() - self.started_at)
