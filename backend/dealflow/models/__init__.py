from .reps import Rep
from .deals import Deal, DealEvent
from .commissions import Commission
from .pins import Pin

__all__ = [
    'Rep',
    'Deal', 'DealEvent',
    'Commission',
    'Pin',
]
