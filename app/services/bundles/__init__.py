"""
Bundle Service Package
"""

from app.services.bundles.service import (
    bundle_price,
    list_bundles,
    get_user_bundle,
    upsert_bundle,
    delete_bundle,
)

__all__ = [
    "bundle_price",
    "list_bundles",
    "get_user_bundle",
    "upsert_bundle",
    "delete_bundle",
]
