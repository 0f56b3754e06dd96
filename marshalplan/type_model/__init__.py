from .catalog import TypeCatalog
from .loader import TypeGraph, load_type_graph, parse_type_graph, validate_type_graph
from .type_info import (ConstantInfo, ConstructorInfo, FieldInfo, MethodInfo,
                        PropertyInfo, TypeDeclarations, TypeParameter, TypeRef,
                        TypeVisibilityModel, UseSite, parse_type_ref)

__all__ = [
    'TypeCatalog',
    'TypeGraph',
    'load_type_graph',
    'parse_type_graph',
    'validate_type_graph',
    'ConstantInfo',
    'ConstructorInfo',
    'FieldInfo',
    'MethodInfo',
    'PropertyInfo',
    'TypeDeclarations',
    'TypeParameter',
    'TypeRef',
    'TypeVisibilityModel',
    'UseSite',
    'parse_type_ref',
]
