from .memory_manager import MemoryManager
from .vector_store import VectorStore
