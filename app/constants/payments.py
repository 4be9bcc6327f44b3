"""
Payment type and status names shared by the pricing and payment layers.

Each purchase type carries exactly one reference key in Payment.info.
"""

from enum import Enum


class PaymentType(str, Enum):
    SUBSCRIPTION_NEW = "subscription_new"
    POST = "post"
    MESSAGE = "message"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"


# Reference key required in Payment.info for each type
REFERENCE_KEYS = {
    PaymentType.SUBSCRIPTION_NEW: "sub_id",
    PaymentType.POST: "post_id",
    PaymentType.MESSAGE: "message_id",
}

BUNDLE_KEY = "bundle_id"
