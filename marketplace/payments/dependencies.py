from fastapi import Request
from marketplace.payments.client import PaystackClient


async def get_paystack(request: Request) -> PaystackClient:
    return request.app.state.paystack
