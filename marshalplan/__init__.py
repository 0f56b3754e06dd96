from marshalplan.pipeline import ResolutionPass, ResolutionResult

__all__ = [
    'ResolutionPass',
    'ResolutionResult',
]
