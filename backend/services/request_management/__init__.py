"""
Delivery request management service.

This module handles:
    - Request creation, update, duplication and cancellation by customers
    - Cached request lookups, paginated listings and per-request analytics
    - Nearby open-request search for travelers
    - Popular route aggregation
"""

from .request_lifecycle import (
    create_delivery_request,
    get_delivery_request,
    get_customer_requests,
    update_delivery_request,
    cancel_delivery_request,
    duplicate_delivery_request,
    get_request_analytics,
    search_delivery_requests,
    get_popular_routes,
)

__all__ = [
    "create_delivery_request",
    "get_delivery_request",
    "get_customer_requests",
    "update_delivery_request",
    "cancel_delivery_request",
    "duplicate_delivery_request",
    "get_request_analytics",
    "search_delivery_requests",
    "get_popular_routes",
]
