"""
Interfaces de repositorios del dominio.
"""
from possync.domain.repositories.sync_store import SyncStore

__all__ = ["SyncStore"]
