import pytest

from marshalplan.analyzer import BlittabilityAnalyzer
from marshalplan.data_types import FieldVisibility, TypeKind
from marshalplan.type_model import (ConstantInfo, ConstructorInfo, FieldInfo,
                                    MethodInfo, PropertyInfo, TypeCatalog,
                                    TypeDeclarations, TypeParameter,
                                    TypeVisibilityModel, parse_type_ref)
from marshalplan.utils import load_default_config


def t(text):
    return parse_type_ref(text)


def field(name, type_text, erased=False):
    visibility = FieldVisibility.ERASED_PLACEHOLDER if erased else FieldVisibility.FULLY_VISIBLE
    return FieldInfo(name, t(type_text), visibility)


def struct(name, fields=(), *, kind=TypeKind.VALUE_TYPE, blittable=False, generate=False,
           native=None, type_parameters=(), underlying=None):
    return TypeVisibilityModel(
        type_ref=t(name),
        kind=kind,
        fields=tuple(fields),
        type_parameters=tuple(
            p if isinstance(p, TypeParameter) else TypeParameter(p) for p in type_parameters
        ),
        declarations=TypeDeclarations(
            generate_marshalling=generate,
            blittable=blittable,
            native_type=t(native) if native else None,
        ),
        underlying=t(underlying) if underlying else None,
    )


def shadow(name, managed, *, ctor=True, to_managed=True, free_native=False, free_native_params=(),
           value=None, value_get=True, value_set=True, value_by_ref=False, pinnable=None,
           buffer_ctor=False, buffer_size=None, requires_stack=None, kind=TypeKind.VALUE_TYPE,
           fields=(("handle", "nint"),)):
    """Build a native shadow type for ``managed`` exposing the requested contract members."""
    constructors = []
    if ctor:
        constructors.append(ConstructorInfo((t(managed),)))
    if buffer_ctor:
        constructors.append(ConstructorInfo((t(managed), t("Span<byte>"))))

    methods = []
    if to_managed:
        methods.append(MethodInfo("ToManaged", (), t(managed)))
    if free_native:
        methods.append(MethodInfo("FreeNative", tuple(t(p) for p in free_native_params)))
    if pinnable is not None:
        methods.append(MethodInfo("GetPinnableReference", (), t(pinnable), returns_by_ref=True))

    properties = []
    if value is not None:
        properties.append(PropertyInfo("Value", t(value), value_get, value_set, value_by_ref))

    constants = []
    if buffer_size is not None:
        constants.append(ConstantInfo("BufferSize", buffer_size))
    if requires_stack is not None:
        constants.append(ConstantInfo("RequiresStackBuffer", requires_stack))

    return TypeVisibilityModel(
        type_ref=t(name),
        kind=kind,
        fields=tuple(field(n, ty) for n, ty in fields),
        constructors=tuple(constructors),
        methods=tuple(methods),
        properties=tuple(properties),
        constants=tuple(constants),
    )


def catalog(*models, context="test"):
    return TypeCatalog(models, context=context)


def analyzer_for(*models, config=None):
    return BlittabilityAnalyzer(catalog(*models), config=config)


@pytest.fixture
def config():
    return load_default_config()
