"""Request rate limiting shared by the application and its routers."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from gigmarket.core.config import get_settings

limiter = Limiter(key_func=get_remote_address)


def order_create_limit() -> str:
    return get_settings().order_create_rate_limit
