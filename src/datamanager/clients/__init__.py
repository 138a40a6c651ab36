"""Remote service clients: contract, managed connections and the pool."""

from datamanager.clients.base import RemoteService, RemoteServiceFactory, ServiceRequest
from datamanager.clients.pool import ConnectionPool
from datamanager.clients.proxy import ManagedConnection

__all__ = [
    "ConnectionPool",
    "ManagedConnection",
    "RemoteService",
    "RemoteServiceFactory",
    "ServiceRequest",
]
