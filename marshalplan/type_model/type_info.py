from dataclasses import dataclass, field, replace
from typing import Mapping, Optional

from marshalplan.data_types import FieldVisibility, TypeKind, UseSiteKind


@dataclass(frozen=True)
class TypeRef:
    """Semantic reference to a type; non-empty ``args`` is a generic instantiation."""

    name: str
    args: tuple["TypeRef", ...] = ()

    @property
    def is_pointer(self) -> bool:
        return self.name.endswith("*")

    @property
    def is_instantiation(self) -> bool:
        return bool(self.args)

    def substitute(self, mapping: Mapping[str, "TypeRef"]) -> "TypeRef":
        if not self.args and self.name in mapping:
            return mapping[self.name]
        if not self.args:
            return self
        return TypeRef(self.name, tuple(arg.substitute(mapping) for arg in self.args))

    def mentions(self, names) -> bool:
        if not self.args:
            return self.name in names
        return any(arg.mentions(names) for arg in self.args)

    def __str__(self) -> str:
        if not self.args:
            return self.name
        return f"{self.name}<{', '.join(str(arg) for arg in self.args)}>"


def parse_type_ref(text: str) -> TypeRef:
    """Parse ``Name``, ``Name<A, B<C>>`` or a pointer spelling such as ``int*``.

    Pointer spellings are kept opaque: ``Box<T>*`` is a single name.
    """
    if not isinstance(text, str) or not text.strip():
        raise ValueError(f"Invalid type reference: {text!r}")
    stripped = "".join(text.split())
    if stripped.endswith("*"):
        return TypeRef(stripped)

    ref, end = _parse_at(stripped, 0)
    if end != len(stripped):
        raise ValueError(f"Unexpected trailing text in type reference: {text!r}")
    return ref


def _parse_at(text: str, pos: int) -> tuple[TypeRef, int]:
    start = pos
    while pos < len(text) and text[pos] not in "<>,":
        pos += 1
    name = text[start:pos]
    if not name:
        raise ValueError(f"Missing type name at offset {start} in {text!r}")
    if pos >= len(text) or text[pos] != "<":
        return TypeRef(name), pos

    args: list[TypeRef] = []
    pos += 1
    while True:
        arg, pos = _parse_at(text, pos)
        args.append(arg)
        if pos >= len(text):
            raise ValueError(f"Unterminated generic argument list in {text!r}")
        if text[pos] == ",":
            pos += 1
            continue
        if text[pos] == ">":
            return TypeRef(name, tuple(args)), pos + 1
        raise ValueError(f"Unexpected '{text[pos]}' in {text!r}")


@dataclass(frozen=True)
class FieldInfo:
    name: str
    type_ref: TypeRef
    visibility: FieldVisibility = FieldVisibility.FULLY_VISIBLE

    @property
    def is_erased(self) -> bool:
        return self.visibility is FieldVisibility.ERASED_PLACEHOLDER


@dataclass(frozen=True)
class TypeParameter:
    name: str
    can_be_value_type: bool = True


@dataclass(frozen=True)
class ConstructorInfo:
    parameter_types: tuple[TypeRef, ...]

    def __str__(self) -> str:
        return f".ctor({', '.join(str(p) for p in self.parameter_types)})"


@dataclass(frozen=True)
class MethodInfo:
    name: str
    parameter_types: tuple[TypeRef, ...] = ()
    return_type: Optional[TypeRef] = None
    returns_by_ref: bool = False

    def __str__(self) -> str:
        ret = "void" if self.return_type is None else str(self.return_type)
        if self.returns_by_ref:
            ret = f"ref {ret}"
        return f"{ret} {self.name}({', '.join(str(p) for p in self.parameter_types)})"


@dataclass(frozen=True)
class PropertyInfo:
    name: str
    type_ref: TypeRef
    gettable: bool = True
    settable: bool = True
    by_ref: bool = False


@dataclass(frozen=True)
class ConstantInfo:
    name: str
    value: object


@dataclass(frozen=True)
class TypeDeclarations:
    generate_marshalling: bool = False
    blittable: bool = False
    native_type: Optional[TypeRef] = None

    @property
    def any(self) -> bool:
        return self.generate_marshalling or self.blittable or self.native_type is not None


@dataclass(frozen=True)
class TypeVisibilityModel:
    """Field and member information of one type as seen from one compilation.

    ``fields`` keeps declaration order. Erased fields stand in for private
    state hidden by a compiled-library boundary; such a type can only be
    blittable by explicit declaration.
    """

    type_ref: TypeRef
    kind: TypeKind = TypeKind.VALUE_TYPE
    fields: tuple[FieldInfo, ...] = ()
    type_parameters: tuple[TypeParameter, ...] = ()
    declarations: TypeDeclarations = field(default_factory=TypeDeclarations)
    constructors: tuple[ConstructorInfo, ...] = ()
    methods: tuple[MethodInfo, ...] = ()
    properties: tuple[PropertyInfo, ...] = ()
    constants: tuple[ConstantInfo, ...] = ()
    underlying: Optional[TypeRef] = None

    @property
    def name(self) -> str:
        return self.type_ref.name

    @property
    def is_generic_definition(self) -> bool:
        return bool(self.type_parameters)

    @property
    def has_erased_fields(self) -> bool:
        return any(f.is_erased for f in self.fields)

    def open_type_ref(self) -> TypeRef:
        """``Box<T>`` for a generic definition ``Box``; the plain reference otherwise."""
        if not self.type_parameters or self.type_ref.args:
            return self.type_ref
        return TypeRef(self.name, tuple(TypeRef(p.name) for p in self.type_parameters))

    def bindings_for(self, type_ref: TypeRef) -> Optional[dict[str, TypeRef]]:
        """Map type parameters to the arguments of ``type_ref``; ``None`` on arity mismatch."""
        if not type_ref.args:
            return {}
        if len(type_ref.args) != len(self.type_parameters):
            return None
        return {param.name: arg for param, arg in zip(self.type_parameters, type_ref.args)}

    def bind_members(self, bindings: Mapping[str, TypeRef]) -> "TypeVisibilityModel":
        """Substitute ``bindings`` into constructor, method and property signatures."""
        if not bindings:
            return self

        def sub(ref: Optional[TypeRef]) -> Optional[TypeRef]:
            return ref.substitute(bindings) if ref is not None else None

        return replace(
            self,
            constructors=tuple(ConstructorInfo(tuple(sub(p) for p in c.parameter_types))
                               for c in self.constructors),
            methods=tuple(replace(m, parameter_types=tuple(sub(p) for p in m.parameter_types),
                                  return_type=sub(m.return_type))
                          for m in self.methods),
            properties=tuple(replace(p, type_ref=sub(p.type_ref)) for p in self.properties),
        )

    def type_parameter_names(self) -> set[str]:
        return {p.name for p in self.type_parameters}

    def type_parameter(self, name: str) -> Optional[TypeParameter]:
        for param in self.type_parameters:
            if param.name == name:
                return param
        return None

    def find_methods(self, name: str) -> list[MethodInfo]:
        return [m for m in self.methods if m.name == name]

    def find_property(self, name: str) -> Optional[PropertyInfo]:
        for prop in self.properties:
            if prop.name == name:
                return prop
        return None

    def find_constant(self, name: str) -> Optional[ConstantInfo]:
        for const in self.constants:
            if const.name == name:
                return const
        return None

    def __repr__(self) -> str:
        return f"TypeVisibilityModel({self.type_ref})"


@dataclass(frozen=True)
class UseSite:
    site_id: str
    managed_type: TypeRef
    kind: UseSiteKind = UseSiteKind.IN
    marshal_using: Optional[TypeRef] = None
    # Declared by the code generator; the plan never assumes a stack frame.
    stack_frame_available: bool = False
