from .factory import get_adapter
from .types import InternalBooking

__all__ = ['get_adapter', 'InternalBooking']
