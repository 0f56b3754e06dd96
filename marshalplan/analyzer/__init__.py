from .blittability import (BlittabilityAnalyzer, BlittabilityVerdict,
                           RecursiveLayoutError, VerdictCache)

__all__ = [
    'BlittabilityAnalyzer',
    'BlittabilityVerdict',
    'RecursiveLayoutError',
    'VerdictCache',
]
