from __future__ import annotations

import asyncio
import logging
import os
from typing import Callable, List

from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware

from . import schemas
from .admin import AdminView
from .database import init_db
from .kitchen import KitchenView
from .ordering import OrderForm, OrderingView, OrderItemsError, OrderValidationError
from .repository import BackendError, RowNotFoundError, TableStore
from .status import InvalidTransitionError, available_action
from .views import LiveView

logger = logging.getLogger("preorder-service")


def configure_logging() -> None:
    level = os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def get_store(request: Request) -> TableStore:
    return request.app.state.store


def _loaded(view: LiveView, failure: str) -> LiveView:
    try:
        view.load()
    except BackendError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"{failure}: {exc}")
    return view


def _kitchen_order(order: dict) -> schemas.KitchenOrder:
    action = available_action(order["status"])
    return schemas.KitchenOrder(
        **order,
        next_action=schemas.StatusActionModel(label=action.label, target=action.target)
        if action
        else None,
    )


def _admin_snapshot(view: AdminView) -> schemas.AdminSnapshot:
    stats = view.stats()
    return schemas.AdminSnapshot(
        meals=[schemas.Meal(**meal) for meal in view.meals],
        orders=[schemas.Order(**order) for order in view.orders],
        stats=schemas.AdminStats(
            total_orders=stats.total_orders,
            completed_orders=stats.completed_orders,
            available_meals=stats.available_meals,
        ),
    )


def create_app(store: TableStore | None = None) -> FastAPI:
    configure_logging()
    if store is None:
        init_db()
        store = TableStore()
    app = FastAPI(
        title="Preorder Service",
        version="0.1.0",
        description="Order-ahead meals: customer ordering, kitchen status board and admin panel.",
    )
    app.state.store = store

    allowed_origins = [
        origin.strip() for origin in os.environ.get("ALLOWED_ORIGINS", "*").split(",")
    ]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/healthz", response_model=schemas.HealthResponse, tags=["system"])
    async def health() -> schemas.HealthResponse:
        return schemas.HealthResponse(status="ok")

    @app.get("/meals", response_model=List[schemas.Meal], tags=["ordering"])
    async def list_available_meals(
        store: TableStore = Depends(get_store),
    ) -> List[schemas.Meal]:
        view = _loaded(OrderingView(store), "Failed to load meals")
        return [schemas.Meal(**meal) for meal in view.meals]

    @app.post(
        "/orders",
        response_model=schemas.PlacedOrder,
        status_code=status.HTTP_201_CREATED,
        tags=["ordering"],
    )
    async def place_order(
        payload: schemas.PlaceOrderRequest,
        store: TableStore = Depends(get_store),
    ) -> schemas.PlacedOrder:
        view = _loaded(OrderingView(store), "Failed to load meals")
        for line in payload.items:
            meal = view.find_meal(line.meal_id)
            if meal is None:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Meal {line.meal_id} is not available",
                )
            view.add_to_cart(meal, line.quantity)
        view.form = OrderForm(
            user_name=payload.user_name,
            room_number=payload.room_number,
            pickup_time=payload.pickup_time,
            special_instructions=payload.special_instructions or "",
        )
        total = view.get_total_price()
        try:
            order = view.place_order()
        except OrderValidationError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
        except OrderItemsError as exc:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail={"message": str(exc), "order_id": exc.order_id},
            )
        except BackendError as exc:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Failed to place order: {exc}"
            )
        return schemas.PlacedOrder(**order, total_price=round(total, 2))

    @app.get("/kitchen/orders", response_model=List[schemas.KitchenOrder], tags=["kitchen"])
    async def list_kitchen_orders(
        store: TableStore = Depends(get_store),
    ) -> List[schemas.KitchenOrder]:
        view = _loaded(KitchenView(store), "Failed to load orders")
        return [_kitchen_order(order) for order in view.orders]

    def _change_status(action: Callable[[], str]) -> str:
        try:
            return action()
        except RowNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
        except InvalidTransitionError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
        except BackendError as exc:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"Failed to update order status: {exc}",
            )

    @app.post(
        "/kitchen/orders/{order_id}/status",
        response_model=schemas.StatusUpdateResponse,
        status_code=status.HTTP_202_ACCEPTED,
        tags=["kitchen"],
    )
    async def update_order_status(
        order_id: str,
        payload: schemas.StatusUpdateRequest,
        store: TableStore = Depends(get_store),
    ) -> schemas.StatusUpdateResponse:
        view = _loaded(KitchenView(store), "Failed to load orders")

        def send() -> str:
            view.update_status(order_id, payload.status)
            return payload.status

        requested = _change_status(send)
        return schemas.StatusUpdateResponse(order_id=order_id, requested_status=requested)

    @app.post(
        "/kitchen/orders/{order_id}/advance",
        response_model=schemas.StatusUpdateResponse,
        status_code=status.HTTP_202_ACCEPTED,
        tags=["kitchen"],
    )
    async def advance_order(
        order_id: str, store: TableStore = Depends(get_store)
    ) -> schemas.StatusUpdateResponse:
        view = _loaded(KitchenView(store), "Failed to load orders")
        requested = _change_status(lambda: view.advance(order_id))
        return schemas.StatusUpdateResponse(order_id=order_id, requested_status=requested)

    @app.get("/admin/meals", response_model=List[schemas.Meal], tags=["admin"])
    async def list_all_meals(store: TableStore = Depends(get_store)) -> List[schemas.Meal]:
        view = _loaded(AdminView(store), "Failed to load meals")
        return [schemas.Meal(**meal) for meal in view.meals]

    @app.get("/admin/orders", response_model=List[schemas.Order], tags=["admin"])
    async def list_all_orders(store: TableStore = Depends(get_store)) -> List[schemas.Order]:
        view = _loaded(AdminView(store), "Failed to load orders")
        return [schemas.Order(**order) for order in view.orders]

    @app.get("/admin/stats", response_model=schemas.AdminStats, tags=["admin"])
    async def admin_stats(store: TableStore = Depends(get_store)) -> schemas.AdminStats:
        view = _loaded(AdminView(store), "Failed to load admin data")
        stats = view.stats()
        return schemas.AdminStats(
            total_orders=stats.total_orders,
            completed_orders=stats.completed_orders,
            available_meals=stats.available_meals,
        )

    @app.post(
        "/admin/meals/{meal_id}/toggle",
        response_model=schemas.AvailabilityToggleResponse,
        status_code=status.HTTP_202_ACCEPTED,
        tags=["admin"],
    )
    async def toggle_meal(
        meal_id: str,
        payload: schemas.AvailabilityToggleRequest,
        store: TableStore = Depends(get_store),
    ) -> schemas.AvailabilityToggleResponse:
        view = AdminView(store)
        current = payload.current_availability
        try:
            if current is None:
                current = store.get("meals", meal_id)["available"]
            requested = view.toggle_availability(meal_id, current)
        except RowNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
        except BackendError as exc:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"Failed to update meal availability: {exc}",
            )
        return schemas.AvailabilityToggleResponse(
            meal_id=meal_id, requested_availability=requested
        )

    @app.websocket("/ws/kitchen")
    async def kitchen_feed(websocket: WebSocket) -> None:
        await _stream_view(
            websocket,
            KitchenView(app.state.store),
            lambda view: [
                _kitchen_order(order).model_dump(mode="json") for order in view.orders
            ],
        )

    @app.websocket("/ws/admin")
    async def admin_feed(websocket: WebSocket) -> None:
        await _stream_view(
            websocket,
            AdminView(app.state.store),
            lambda view: _admin_snapshot(view).model_dump(mode="json"),
        )

    return app


async def _stream_view(websocket: WebSocket, view: LiveView, snapshot: Callable) -> None:
    """Send the view's full working set on connect and after every refresh."""
    await websocket.accept()
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def push(current: LiveView) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, {"data": snapshot(current)})

    view.add_listener(push)
    with view:
        if view.last_error is not None:
            await websocket.send_json({"error": f"Failed to load: {view.last_error}"})
        receiver = asyncio.ensure_future(_wait_for_disconnect(websocket))
        try:
            while True:
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait(
                    {getter, receiver}, return_when=asyncio.FIRST_COMPLETED
                )
                if receiver in done:
                    getter.cancel()
                    if receiver.exception() is not None:
                        logger.warning(
                            "%s feed receive failed: %s", type(view).__name__, receiver.exception()
                        )
                    break
                await websocket.send_json(getter.result())
        finally:
            receiver.cancel()
            view.remove_listener(push)
    logger.info("%s feed closed", type(view).__name__)


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return
