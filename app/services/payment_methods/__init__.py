"""
Payment Method Service Package
"""

from app.services.payment_methods.service import (
    list_methods,
    set_main_method,
    create_method,
    delete_method,
)

__all__ = [
    "list_methods",
    "set_main_method",
    "create_method",
    "delete_method",
]
