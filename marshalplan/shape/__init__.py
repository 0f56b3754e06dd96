from .shape_validator import (BUFFER_SIZE, FREE_NATIVE, GET_PINNABLE_REFERENCE,
                              REQUIRES_STACK_BUFFER, TO_MANAGED, VALUE,
                              NativeShapeDescriptor, ShapeValidationResult,
                              ShapeValidator)

__all__ = [
    'NativeShapeDescriptor',
    'ShapeValidationResult',
    'ShapeValidator',
    'BUFFER_SIZE',
    'FREE_NATIVE',
    'GET_PINNABLE_REFERENCE',
    'REQUIRES_STACK_BUFFER',
    'TO_MANAGED',
    'VALUE',
]
