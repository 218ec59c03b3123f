"""
Database package for PayGate.

Exports the storage interface, its implementations and ORM models.
"""
from .init_db import build_storage, create_engine_for_path, initialize_database
from .models import Base, MerchantModel, TransactionModel, UserModel
from .sql_storage import SqlStorage
from .storage import MemoryStorage, Storage

__all__ = [
    "build_storage",
    "create_engine_for_path",
    "initialize_database",
    "Base",
    "MerchantModel",
    "TransactionModel",
    "UserModel",
    "SqlStorage",
    "MemoryStorage",
    "Storage",
]
