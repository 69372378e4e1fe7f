from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, computed_field

from .cart import format_price
from .status import OrderStatus


class HealthResponse(BaseModel):
    status: Literal["ok"]


class Meal(BaseModel):
    id: str
    name: str
    description: str = ""
    image_url: str = ""
    price: Optional[float] = None
    available: bool
    created_at: str

    @computed_field
    @property
    def display_price(self) -> str:
        return format_price(self.price)


class Order(BaseModel):
    id: str
    user_name: str
    room_number: str
    pickup_time: str
    status: OrderStatus
    special_instructions: Optional[str] = None
    created_at: str


class OrderItem(BaseModel):
    id: str
    order_id: str
    meal_id: str
    quantity: int
    created_at: str
    meal: Optional[Meal] = None


class StatusActionModel(BaseModel):
    label: str
    target: OrderStatus


class KitchenOrder(Order):
    order_items: List[OrderItem] = Field(default_factory=list)
    next_action: Optional[StatusActionModel] = None


class OrderLine(BaseModel):
    meal_id: str = Field(..., description="ID of the meal")
    quantity: int = Field(default=1, gt=0, description="How many portions")


class PlaceOrderRequest(BaseModel):
    user_name: str = ""
    room_number: str = ""
    pickup_time: str = Field(default="", description="ISO-8601 date/time; naive values are local time")
    special_instructions: Optional[str] = None
    items: List[OrderLine] = Field(default_factory=list)


class PlacedOrder(Order):
    order_items: List[OrderItem]
    total_price: float


class StatusUpdateRequest(BaseModel):
    status: OrderStatus


class StatusUpdateResponse(BaseModel):
    order_id: str
    requested_status: OrderStatus


class AvailabilityToggleRequest(BaseModel):
    current_availability: Optional[bool] = Field(
        default=None,
        description="Availability as last displayed; the stored value is used when omitted",
    )


class AvailabilityToggleResponse(BaseModel):
    meal_id: str
    requested_availability: bool


class AdminStats(BaseModel):
    total_orders: int
    completed_orders: int
    available_meals: int


class AdminSnapshot(BaseModel):
    meals: List[Meal]
    orders: List[Order]
    stats: AdminStats
