from .gateway import QuaiGateway
from .memory import InMemoryNetwork

__all__ = ["QuaiGateway", "InMemoryNetwork"]
