import uuid
from typing import Iterable, List, Optional, Tuple
from sqlalchemy import select
from marketplace.auth.utils import create_access_token, hash_password
from marketplace.schema.full_schema import (ApprovalStatus, Delivery, Orders, Payment, PricingUnit, Product,
                                            ProductCategory, RoleName, Shop, UserRole, Users)

url_prefix = "/api/v1"
strong_pass = "Str0ng!Passw0rd"

LAGOS = (6.5244, 3.3792)
IKEJA = (6.6018, 3.3515)


def auth_headers(user: Users) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.public_id)}"}


async def create_user(session_factory, email: str, *, name: str = "Test User", phone: Optional[str] = None,
                      password: str = strong_pass, roles: Iterable[Tuple] = (), suspended: bool = False) -> Users:
    """roles: (RoleName, ApprovalStatus | None, is_active) tuples."""
    async with session_factory() as session:
        user = Users(email=email, name=name, phone_number=phone, password_hash=hash_password(password),
                     is_suspended=suspended)
        session.add(user)
        await session.flush()
        for role, approval, active in roles:
            session.add(UserRole(user_id=user.id, role=role, status=approval, is_active=active))
        await session.commit()
        return user


async def create_admin(session_factory, email: str = "admin@example.com") -> Users:
    return await create_user(session_factory, email, name="Admin", roles=[(RoleName.ADMIN, None, True)])


async def create_seller(session_factory, email: str, *, location=LAGOS, shop_name: Optional[str] = None,
                        phone: Optional[str] = None) -> Tuple[Users, Shop]:
    user = await create_user(session_factory, email, name="Seller", phone=phone,
                             roles=[(RoleName.SELLER, ApprovalStatus.APPROVED, True)])
    async with session_factory() as session:
        shop = Shop(user_id=user.id, name=shop_name or f"{email.split('@')[0]} stores", city="Lagos", state="Lagos",
                    latitude=location[0] if location else None, longitude=location[1] if location else None,
                    is_active=True)
        session.add(shop)
        await session.commit()
        return user, shop


async def create_rider(session_factory, email: str, *, status: ApprovalStatus = ApprovalStatus.APPROVED,
                       active: bool = True, online: bool = True, location=None) -> Users:
    user = await create_user(session_factory, email, name="Rider", roles=[(RoleName.RIDER, status, active)])
    async with session_factory() as session:
        role = (await session.execute(
            select(UserRole).where(UserRole.user_id == user.id, UserRole.role == RoleName.RIDER)
        )).scalar_one()
        role.is_online = online
        if location:
            role.current_latitude, role.current_longitude = location
        session.add(role)
        await session.commit()
    return user


async def create_product(session_factory, shop: Shop, name: str = "Rice", *,
                         units: Iterable[Tuple] = (("bag", 1000.0, 10),),
                         category: ProductCategory = ProductCategory.GRAINS) -> Tuple[Product, List[PricingUnit]]:
    """units: (unit, price, stock) tuples; stock None leaves the unit untracked."""
    async with session_factory() as session:
        product = Product(shop_id=shop.id, name=name, category=category, images=[])
        session.add(product)
        await session.flush()
        created = []
        for unit, price, stock in units:
            pu = PricingUnit(product_id=product.id, unit=unit, price=price, stock=stock)
            session.add(pu)
            created.append(pu)
        await session.commit()
        return product, created


def order_payload(lines, *, latitude=None, longitude=None) -> dict:
    """lines: (product, pricing_unit, quantity) tuples."""
    return {
        "items": [{"productId": str(p.public_id), "pricingUnitId": str(u.public_id), "quantity": q} for p, u, q in lines],
        "deliveryAddress": "12 Allen Avenue",
        "deliveryCity": "Ikeja",
        "deliveryState": "Lagos",
        "deliveryPhone": "+2348012345678",
        "deliveryLatitude": latitude,
        "deliveryLongitude": longitude,
    }


async def place_order(ac_client, buyer: Users, lines, **kwargs) -> dict:
    resp = await ac_client.post(f"{url_prefix}/orders", json=order_payload(lines, **kwargs), headers=auth_headers(buyer))
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]["orders"][0]


async def get_row(session_factory, model, **filters):
    async with session_factory() as session:
        stmt = select(model)
        for key, value in filters.items():
            stmt = stmt.where(getattr(model, key) == value)
        return (await session.execute(stmt)).scalars().first()


async def order_rows(session_factory, order_public_id: str):
    """Fresh (order, payment, delivery) rows for an order id from the API."""
    async with session_factory() as session:
        order = (await session.execute(
            select(Orders).where(Orders.public_id == uuid.UUID(order_public_id))
        )).scalar_one()
        payment = (await session.execute(select(Payment).where(Payment.order_id == order.id))).scalar_one()
        delivery = (await session.execute(select(Delivery).where(Delivery.order_id == order.id))).scalar_one()
        return order, payment, delivery


async def set_order_state(session_factory, order_public_id: str, *, order_status=None, payment_status=None,
                          escrow_status=None, delivery_status=None, rider: Optional[Users] = None):
    order, payment, delivery = await order_rows(session_factory, order_public_id)
    async with session_factory() as session:
        order = await session.get(Orders, order.id)
        payment = await session.get(Payment, payment.id)
        delivery = await session.get(Delivery, delivery.id)
        if order_status is not None:
            order.status = order_status
        if payment_status is not None:
            payment.status = payment_status
        if escrow_status is not None:
            payment.escrow_status = escrow_status
        if delivery_status is not None:
            delivery.status = delivery_status
        if rider is not None:
            delivery.rider_id = rider.id
        session.add_all([order, payment, delivery])
        await session.commit()
