"""
Application Services Module
"""
from .orders import OrderService, PlaceOrder, OrderLine, OrderUpdate, can_transition
from .provisioning import Identity, provision_profile, remove_profile
from .notifications import send_notification, mark_notification_read, unread_notifications

__all__ = [
    "OrderService",
    "PlaceOrder",
    "OrderLine",
    "OrderUpdate",
    "can_transition",
    "Identity",
    "provision_profile",
    "remove_profile",
    "send_notification",
    "mark_notification_read",
    "unread_notifications",
]
