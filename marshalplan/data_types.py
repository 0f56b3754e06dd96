from enum import Enum, auto


class FieldVisibility(Enum):
    FULLY_VISIBLE = auto()
    ERASED_PLACEHOLDER = auto()


class TypeKind(Enum):
    PRIMITIVE = "primitive"
    VALUE_TYPE = "value_type"
    REFERENCE_TYPE = "reference_type"
    ENUM = "enum"


class VerdictKind(Enum):
    BLITTABLE = "blittable"
    NOT_BLITTABLE = "not_blittable"
    INDETERMINATE_ERASED_INFO = "indeterminate_erased_info"


class MarshallingDirection(Enum):
    MANAGED_TO_NATIVE = "managed_to_native"
    NATIVE_TO_MANAGED = "native_to_managed"


class UseSiteKind(Enum):
    IN = "in"
    REF = "ref"
    OUT = "out"
    RETURN = "return"

    def required_directions(self) -> frozenset[MarshallingDirection]:
        if self is UseSiteKind.IN:
            return frozenset({MarshallingDirection.MANAGED_TO_NATIVE})
        if self is UseSiteKind.REF:
            return frozenset(MarshallingDirection)
        return frozenset({MarshallingDirection.NATIVE_TO_MANAGED})


class BufferKind(Enum):
    NONE = "none"
    OPTIONAL_STACK = "optional_stack"
    REQUIRED_STACK = "required_stack"


class StrategyKind(Enum):
    BLITTABLE = "blittable"
    NATIVE_SHADOW = "native_shadow"
    INELIGIBLE = "ineligible"


class DeclarationSource(Enum):
    USE_SITE = "use_site"
    NATIVE_MARSHALLING = "native_marshalling"
    BLITTABLE = "blittable"
    GENERATED = "generated"
    INTRINSIC = "intrinsic"
    NONE = "none"
