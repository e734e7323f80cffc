from .base_backend import MemoryBackend
from .in_memory_backend import InMemoryBackend
from .postgres_backend import PostgresMemoryBackend
