from fastapi import HTTPException, status
from marketplace.schema.full_schema import ApprovalStatus, RoleName, Shop, UserRole
from marketplace.shops.constants import logger
from marketplace.user.constants import PHONE_REQUIRED_MESSAGE
from marketplace.shops.models import SellerApplyIn
from marketplace.shops.repository import shop_for_user
from marketplace.user.repository import get_user_role


async def apply_for_seller(session, principal, payload: SellerApplyIn) -> dict:
    if not principal.phone_number:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=PHONE_REQUIRED_MESSAGE.format(role="seller"))

    role = await get_user_role(session, principal.user_id, RoleName.SELLER, take_lock=True)
    resubmitted = False
    if role is not None:
        if role.status == ApprovalStatus.APPROVED:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You are already an approved seller")
        if role.status == ApprovalStatus.PENDING:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You already have a pending seller application")
        # rejected applicants may apply again
        role.status = ApprovalStatus.PENDING
        role.is_active = False
        role.kyc_submitted = True
        role.kyc_approved = False
        role.rejection_reason = None
        resubmitted = True
    else:
        role = UserRole(user_id=principal.user_id, role=RoleName.SELLER, is_active=False,
                        status=ApprovalStatus.PENDING, kyc_submitted=True)
    session.add(role)

    shop = await shop_for_user(session, principal.user_id)
    if shop is None:
        shop = Shop(user_id=principal.user_id, name=payload.shopName.strip(), is_active=False)
    shop.name = payload.shopName.strip()
    shop.description = payload.businessDescription.strip()
    shop.address = payload.businessAddress.strip()
    shop.city = payload.city.strip()
    shop.state = payload.state.strip()
    shop.phone = principal.phone_number
    shop.business_type = payload.businessType.strip()
    shop.business_registration_number = (payload.businessRegistrationNumber or "").strip() or None
    shop.latitude = payload.latitude
    shop.longitude = payload.longitude
    # stays hidden until an admin approves the seller
    shop.is_active = False
    session.add(shop)
    await session.flush()

    logger.info("seller.apply.submitted", extra={"user_id": principal.user_id, "resubmitted": resubmitted})
    return {
        "message": "Seller application resubmitted successfully" if resubmitted else "Seller application submitted successfully",
        "status": ApprovalStatus.PENDING.value,
        "shopId": str(shop.public_id),
    }
