from .attribute_resolver import (AttributeResolver, StrategySelector,
                                 synthesized_native_type)

__all__ = [
    'AttributeResolver',
    'StrategySelector',
    'synthesized_native_type',
]
