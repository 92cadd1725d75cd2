from typing import Optional
from sqlalchemy.exc import SQLAlchemyError
from marketplace.common.constants import CURRENCY_SYMBOL
from marketplace.schema.full_schema import Notification, NotificationType
from marketplace.notifications.constants import logger


async def create_notification(session, user_id: int, type: NotificationType, title: str, message: str,
                              link: Optional[str] = None, pricing_unit_id: Optional[int] = None) -> Optional[Notification]:
    """Best-effort: a failed insert is logged and rolled back to its savepoint, never raised."""
    try:
        async with session.begin_nested():
            note = Notification(user_id=user_id, type=type, title=title, message=message,
                                link=link, pricing_unit_id=pricing_unit_id)
            session.add(note)
            await session.flush()
    except SQLAlchemyError as exc:
        logger.error("notification.create.failed", extra={"user_id": user_id, "type": type.value, "error": str(exc)})
        return None

    logger.debug("notification.created", extra={"user_id": user_id, "type": type.value})
    return note


def _amount(value: float) -> str:
    return f"{CURRENCY_SYMBOL}{value:,.2f}"


async def notify_order_placed(session, seller_user_id: int, order_number: str, total: float, order_pid):
    return await create_notification(
        session, seller_user_id, NotificationType.ORDER_PLACED,
        "New Order Received",
        f"You have received a new order #{order_number} worth {_amount(total)}",
        link=f"/seller/orders/{order_pid}",
    )


async def notify_order_status(session, buyer_id: int, order_number: str, status: str, order_pid):
    return await create_notification(
        session, buyer_id, NotificationType.ORDER_STATUS_UPDATE,
        "Order Status Updated",
        f"Your order #{order_number} status has been updated to: {status}",
        link=f"/orders/{order_pid}",
    )


async def notify_order_cancelled(session, user_id: int, order_number: str, order_pid, *, by: str,
                                 to_seller: bool, reason: Optional[str] = None, refunded: bool = False):
    if to_seller:
        message = f"Order #{order_number} has been cancelled by the {by}."
    elif by == "seller":
        message = f"Order #{order_number} has been cancelled by the seller."
    else:
        message = f"Your order #{order_number} has been cancelled."
    if refunded:
        message += " Refund has been issued."
    if reason and by == "seller" and not to_seller:
        message += f" Reason: {reason}"
    return await create_notification(
        session, user_id, NotificationType.ORDER_STATUS_UPDATE,
        f"Order Cancelled by {by.title()}" if by != "buyer" or to_seller else "Order Cancelled",
        message,
        link=f"/seller/orders/{order_pid}" if to_seller else f"/orders/{order_pid}",
    )


async def notify_payment_received(session, user_id: int, order_number: str, amount: float, order_pid, *, seller: bool):
    message = (f"Payment of {_amount(amount)} received for order #{order_number}. Funds are held in escrow until delivery."
               if seller else f"Your payment of {_amount(amount)} for order #{order_number} was successful")
    return await create_notification(
        session, user_id, NotificationType.PAYMENT_RECEIVED, "Payment Received", message,
        link=f"/seller/orders/{order_pid}" if seller else f"/orders/{order_pid}",
    )


async def notify_payment_released(session, seller_user_id: int, order_number: str, amount: float, order_pid):
    return await create_notification(
        session, seller_user_id, NotificationType.PAYMENT_RELEASED,
        "Payment Released",
        f"Payment of {_amount(amount)} has been released for order #{order_number}",
        link=f"/seller/orders/{order_pid}",
    )


async def notify_payment_refunded(session, buyer_id: int, order_number: str, amount: float, order_pid):
    return await create_notification(
        session, buyer_id, NotificationType.PAYMENT_REFUNDED,
        "Payment Refunded",
        f"A refund of {_amount(amount)} has been issued for order #{order_number}",
        link=f"/orders/{order_pid}",
    )


async def notify_delivery_assigned(session, rider_id: int, order_number: str, delivery_pid):
    return await create_notification(
        session, rider_id, NotificationType.DELIVERY_ASSIGNED,
        "New Delivery Assigned",
        f"You have been assigned to deliver order #{order_number}",
        link=f"/rider/deliveries/{delivery_pid}",
    )


async def notify_dispute_created(session, buyer_id: int, seller_id: int, order_number: str, dispute_pid):
    await create_notification(
        session, buyer_id, NotificationType.DISPUTE_CREATED,
        "Dispute Created",
        f"Your dispute for order #{order_number} has been submitted and is under review",
        link=f"/disputes/{dispute_pid}",
    )
    await create_notification(
        session, seller_id, NotificationType.DISPUTE_CREATED,
        "Dispute Opened",
        f"A dispute has been opened for order #{order_number}",
        link=f"/seller/disputes/{dispute_pid}",
    )


async def notify_dispute_resolved(session, user_ids, order_number: str, resolution: str, dispute_pid):
    for user_id in user_ids:
        await create_notification(
            session, user_id, NotificationType.DISPUTE_RESOLVED,
            "Dispute Resolved",
            f"The dispute for order #{order_number} has been resolved: {resolution}",
            link=f"/disputes/{dispute_pid}",
        )


async def notify_low_stock(session, seller_user_id: int, product_name: str, unit: str, stock: int,
                           threshold: int, pricing_unit_id: int, product_pid):
    return await create_notification(
        session, seller_user_id, NotificationType.LOW_STOCK_ALERT,
        "Low Stock Alert",
        f"{product_name} ({unit}) is running low. Current stock: {stock}, Threshold: {threshold}",
        link=f"/seller/products/{product_pid}",
        pricing_unit_id=pricing_unit_id,
    )


async def notify_role_decision(session, user_id: int, role: str, approved: bool, reason: Optional[str] = None):
    if approved:
        return await create_notification(
            session, user_id, NotificationType.ROLE_APPROVED,
            f"{role.title()} Application Approved",
            f"Your {role.lower()} application has been approved",
        )
    suffix = f": {reason}" if reason else ""
    return await create_notification(
        session, user_id, NotificationType.ROLE_REJECTED,
        f"{role.title()} Application Rejected",
        f"Your {role.lower()} application has been rejected{suffix}",
    )
