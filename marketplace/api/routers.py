from fastapi import APIRouter
from marketplace.admin.routes import admin_router
from marketplace.api import version_prefix
from marketplace.auth.routes import auth_router
from marketplace.deliveries.routes import admin_deliveries_router, delivery_fee_router
from marketplace.disputes.routes import admin_disputes_router, disputes_router
from marketplace.inventory.routes import inventory_router
from marketplace.notifications.routes import notifications_router
from marketplace.orders.routes import orders_router, seller_orders_router
from marketplace.payments.routes import payments_router, webhooks_router
from marketplace.places.routes import places_router
from marketplace.products.routes import prods_public_router, prods_seller_router
from marketplace.ratings.routes import reviews_router, rider_ratings_router
from marketplace.riders.routes import riders_router
from marketplace.shops.routes import seller_shop_router, shops_public_router
from marketplace.wishlist.routes import wishlist_router


public_routers = APIRouter(prefix=version_prefix)

public_routers.include_router(auth_router, prefix="/auth", tags=["auth"])
public_routers.include_router(notifications_router, prefix="/notifications", tags=["notifications"])
public_routers.include_router(prods_public_router, prefix="/products", tags=["products-public"])
public_routers.include_router(shops_public_router, prefix="/shops", tags=["shops-public"])
public_routers.include_router(orders_router, prefix="/orders", tags=["orders"])
public_routers.include_router(payments_router, prefix="/payments", tags=["payments"])
public_routers.include_router(webhooks_router, prefix="/webhooks", tags=["webhooks"])
public_routers.include_router(delivery_fee_router, prefix="/delivery-fee", tags=["deliveries"])
public_routers.include_router(reviews_router, prefix="/reviews", tags=["ratings"])
public_routers.include_router(rider_ratings_router, prefix="/rider-ratings", tags=["ratings"])
public_routers.include_router(disputes_router, prefix="/disputes", tags=["disputes"])
public_routers.include_router(wishlist_router, prefix="/wishlist", tags=["wishlist"])
public_routers.include_router(places_router, prefix="/places", tags=["places"])

#--------------------------------------------------------------------------------------------------------

seller_routers = APIRouter(prefix=f"{version_prefix}/seller")

seller_routers.include_router(seller_shop_router, tags=["seller"])
seller_routers.include_router(prods_seller_router, prefix="/products", tags=["products-seller"])
seller_routers.include_router(inventory_router, prefix="/inventory", tags=["inventory"])
seller_routers.include_router(seller_orders_router, prefix="/orders", tags=["orders-seller"])

rider_routers = APIRouter(prefix=f"{version_prefix}/rider")

rider_routers.include_router(riders_router, tags=["rider"])

#--------------------------------------------------------------------------------------------------------

admin_routers = APIRouter(prefix=f"{version_prefix}/admin")

admin_routers.include_router(admin_router, tags=["admin"])
admin_routers.include_router(admin_deliveries_router, prefix="/deliveries", tags=["deliveries-admin"])
admin_routers.include_router(admin_disputes_router, prefix="/disputes", tags=["disputes-admin"])
