from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class Colors:
    BLUE = "blue"
    GREEN = "green"
    YELLOW = "yellow"
    ORANGE = "orange"
    RED = "red"


class CardField(BaseModel):
    name: str
    value: str
    inline: bool = False


class Card(BaseModel):
    """Platform-neutral embed: the gateway decides how to render it."""

    title: Optional[str] = None
    description: Optional[str] = None
    color: str = Colors.BLUE
    url: Optional[str] = None
    fields: List[CardField] = []
    footer: Optional[str] = None
    timestamp: Optional[datetime] = None

    def with_state(
        self,
        *,
        color: str,
        fields: List[CardField],
        timestamp: Optional[datetime] = None,
    ) -> "Card":
        return self.model_copy(update={"color": color, "fields": fields, "timestamp": timestamp})


class Control(BaseModel):
    """A single button attached to a message."""

    custom_id: str
    label: str
    ttl: Optional[float] = None


__all__ = ["Card", "CardField", "Colors", "Control"]
