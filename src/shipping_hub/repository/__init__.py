from .events import EventRepository, InMemoryEventRepository, JsonEventRepository
from .providers import InMemoryProviderRepository, JsonProviderRepository, ProviderRepository

__all__ = [
    "EventRepository",
    "InMemoryEventRepository",
    "JsonEventRepository",
    "InMemoryProviderRepository",
    "JsonProviderRepository",
    "ProviderRepository",
]
