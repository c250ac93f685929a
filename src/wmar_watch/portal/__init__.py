from .client import NavigationResult, WmarClient
from .fill import AttributeStrategy, FieldFiller, LabelStrategy, OrdinalStrategy
from .frames import locate

__all__ = [
    "WmarClient",
    "NavigationResult",
    "FieldFiller",
    "LabelStrategy",
    "AttributeStrategy",
    "OrdinalStrategy",
    "locate",
]
