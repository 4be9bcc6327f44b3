"""
Payment Service Layer

This package provides payment creation, gateway dispatch and callback
confirmation.
"""

from app.services.payments.service import (
    create_and_dispatch,
    purchase,
    confirm_from_callback,
    list_enabled_gateways,
)

__all__ = [
    "create_and_dispatch",
    "purchase",
    "confirm_from_callback",
    "list_enabled_gateways",
]
