"""
schemas.py: Delivery catalog and preference contracts.

fee is always in cents, as stored (7500 == $75.00 MXN).
"""
from enum import Enum
from typing import Optional

from luzimarket.schemas import CamelModel


class StateOption(CamelModel):
    """Entry of the state lookup, e.g. {value: 'coahuila', label: 'Coahuila'}."""
    value: str
    label: str


class DeliveryZone(CamelModel):
    id: str
    name: str
    fee: int
    state_code: str
    is_active: bool = True
    description: Optional[str] = None


class DeliveryPreference(CamelModel):
    """
    A confirmed (state, zone) pair.

    zone_fee and zone_name are denormalized at selection time and are
    informational only; the pair is re-validated against the live catalog
    before it is used.
    """
    state_code: str
    zone_id: str
    zone_fee: Optional[int] = None
    zone_name: Optional[str] = None


class SelectionStatus(str, Enum):
    no_selection = "no_selection"
    state_selected = "state_selected"
    zone_selected = "zone_selected"
    confirmed = "confirmed"
    invalid = "invalid"


class ConfirmResult(CamelModel):
    preference: DeliveryPreference
    message: str
    durable: bool
