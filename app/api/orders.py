from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.dependencies import get_current_user, get_current_user_optional
from app.models import Order, User, get_db
from app.schemas.orders import OrderCreateRequest, OrderItemResponse, OrderResponse
from app.services.errors import ProductNotFound, StockInsufficient
from app.services.order_placement import CustomerContact, OrderLine, place_order

router = APIRouter()


def order_to_response(order: Order) -> OrderResponse:
    return OrderResponse(
        id=order.id,
        total=order.total,
        payment_status=order.payment_status,
        status=order.status,
        stock_consumed=order.stock_consumed,
        items=[OrderItemResponse.model_validate(item) for item in order.items],
        created_at=order.created_at.isoformat() if order.created_at else "",
    )


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Place order and reserve stock",
)
def create_order(
    body: OrderCreateRequest,
    current_user: Annotated[User | None, Depends(get_current_user_optional)],
    db: Annotated[Session, Depends(get_db)],
):
    """
    Reserve stock for every item and create the order in pending_payment.
    Either all items are reserved or none are. Pay it with POST /api/paymee/init.
    """
    try:
        order = place_order(
            db,
            lines=[OrderLine(item.product_id, item.quantity, item.combination_id) for item in body.items],
            contact=CustomerContact(name=body.name, email=body.email, phone=body.phone, address=body.address),
            user_id=current_user.id if current_user else None,
        )
    except StockInsufficient as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ProductNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return order_to_response(order)


@router.get(
    "/me",
    response_model=list[OrderResponse],
    summary="List my orders",
)
def my_orders(
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
):
    """Returns the list of orders for the current user."""
    orders = db.query(Order).filter(Order.user_id == current_user.id).order_by(Order.created_at.desc()).all()
    return [order_to_response(o) for o in orders]
