"""
Database package for PaySync.

Exports engine/session construction, table creation and ORM models.
"""
from .init_db import create_engine_and_sessionmaker, initialize_database
from .models import (
    Base,
    UserModel,
    ProductModel,
    OrderModel,
    ORDER_STATUSES
)

__all__ = [
    "create_engine_and_sessionmaker",
    "initialize_database",
    "Base",
    "UserModel",
    "ProductModel",
    "OrderModel",
    "ORDER_STATUSES",
]
