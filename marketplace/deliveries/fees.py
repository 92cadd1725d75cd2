import math
from datetime import datetime, timedelta
from typing import Optional
from marketplace.common.utils import now

EARTH_RADIUS_KM = 6371

BASE_FEE = 500          # NGN
PER_KM_RATE = 100       # NGN per km
MIN_FEE = 500
MAX_FEE = 5000
DEFAULT_DELIVERY_FEE = MIN_FEE

BASE_DELIVERY_MINUTES = 30
MINUTES_PER_KM = 10


def _round_half_up(value: float, places: int = 0) -> float:
    factor = 10 ** places
    return math.floor(value * factor + 0.5) / factor


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (math.sin(d_lat / 2) ** 2
         + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return _round_half_up(EARTH_RADIUS_KM * c, 2)


def calculate_delivery_fee(distance_km: float) -> int:
    if distance_km <= 0:
        return MIN_FEE
    fee = int(_round_half_up(BASE_FEE + distance_km * PER_KM_RATE))
    return max(MIN_FEE, min(fee, MAX_FEE))


def valid_coordinates(lat: Optional[float], lng: Optional[float]) -> bool:
    if lat is None or lng is None or isinstance(lat, bool) or isinstance(lng, bool):
        return False
    try:
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError):
        return False
    return -90 <= lat <= 90 and -180 <= lng <= 180


def distance_between(shop_lat, shop_lng, dest_lat, dest_lng) -> Optional[float]:
    if not (valid_coordinates(shop_lat, shop_lng) and valid_coordinates(dest_lat, dest_lng)):
        return None
    return haversine_km(float(shop_lat), float(shop_lng), float(dest_lat), float(dest_lng))


def calculate_delivery_fee_from_coordinates(shop_lat, shop_lng, dest_lat, dest_lng) -> Optional[int]:
    """None when any coordinate is missing or out of range."""
    distance = distance_between(shop_lat, shop_lng, dest_lat, dest_lng)
    if distance is None:
        return None
    return calculate_delivery_fee(distance)


def estimate_delivery_minutes(distance_km: Optional[float]) -> int:
    km = distance_km or 0
    return int(BASE_DELIVERY_MINUTES + math.ceil(max(0.0, km) * MINUTES_PER_KM))


def estimated_delivery_at(distance_km: Optional[float], start: Optional[datetime] = None) -> datetime:
    return (start or now()) + timedelta(minutes=estimate_delivery_minutes(distance_km))
