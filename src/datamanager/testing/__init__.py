"""Test support: in-memory remote service with scripted faults."""

from datamanager.testing.memory_service import MemoryService, MemoryServiceFactory, MemoryStore

__all__ = ["MemoryService", "MemoryServiceFactory", "MemoryStore"]
