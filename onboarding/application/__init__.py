"""Application services."""

from .customers import (
    CustomerService,
    configure_customer_service,
    create_customer_service,
    get_customer_service,
    reset_customer_service,
)

__all__ = [
    "CustomerService",
    "configure_customer_service",
    "create_customer_service",
    "get_customer_service",
    "reset_customer_service",
]
