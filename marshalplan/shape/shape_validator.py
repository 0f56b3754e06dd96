from dataclasses import dataclass, field
from typing import Optional

from marshalplan import logging as marshalplan_logging
from marshalplan.analyzer import BlittabilityAnalyzer, RecursiveLayoutError
from marshalplan.data_types import TypeKind
from marshalplan.diagnostics import (Diagnostic, DiagnosticCode,
                                     DiagnosticSeverity, has_fatal)
from marshalplan.type_model import (ConstructorInfo, MethodInfo, PropertyInfo,
                                    TypeRef, TypeVisibilityModel)

logger = marshalplan_logging.get_logger(__name__)

# Member names are the contract; they must match exactly.
TO_MANAGED = "ToManaged"
FREE_NATIVE = "FreeNative"
VALUE = "Value"
GET_PINNABLE_REFERENCE = "GetPinnableReference"
BUFFER_SIZE = "BufferSize"
REQUIRES_STACK_BUFFER = "RequiresStackBuffer"

# second parameter of the (managed, buffer) constructor: Span<byte> or a pointer
BUFFER_SPAN = TypeRef("Span", (TypeRef("byte"),))


@dataclass(frozen=True)
class NativeShapeDescriptor:
    """Which contract members a native shadow type exposes, with their signatures.

    Only recognized members are recorded: a member with the right name but a
    wrong signature is absent as far as the plan is concerned.
    """

    native_type: TypeRef
    managed_type: TypeRef
    managed_constructor: Optional[ConstructorInfo] = None
    buffer_constructor: Optional[ConstructorInfo] = None
    to_managed: Optional[MethodInfo] = None
    free_native: Optional[MethodInfo] = None
    value_property: Optional[PropertyInfo] = None
    value_blittable: bool = False
    pinnable_reference: Optional[MethodInfo] = None
    pinned_type_blittable: bool = False
    buffer_size: Optional[int] = None
    requires_stack_buffer: bool = False
    dependencies: tuple[TypeRef, ...] = ()

    @property
    def supports_managed_to_native(self) -> bool:
        return self.managed_constructor is not None or self.buffer_constructor is not None

    @property
    def supports_native_to_managed(self) -> bool:
        if self.to_managed is None:
            return False
        # the produced value has to be written back through Value
        return self.value_property is None or self.value_property.settable

    @property
    def release_required(self) -> bool:
        return self.free_native is not None

    @property
    def unwraps_value(self) -> bool:
        return self.value_property is not None and self.value_property.gettable and self.value_blittable

    @property
    def value_type(self) -> Optional[TypeRef]:
        return self.value_property.type_ref if self.value_property is not None else None

    @property
    def pinned_type(self) -> Optional[TypeRef]:
        return self.pinnable_reference.return_type if self.pinnable_reference is not None else None

    def to_dict(self) -> dict:
        return {
            "native_type": str(self.native_type),
            "managed_type": str(self.managed_type),
            "managed_constructor": self.managed_constructor is not None,
            "buffer_constructor": self.buffer_constructor is not None,
            "to_managed": self.to_managed is not None,
            "free_native": self.free_native is not None,
            "value": None if self.value_property is None else {
                "type": str(self.value_property.type_ref),
                "get": self.value_property.gettable,
                "set": self.value_property.settable,
                "blittable": self.value_blittable,
            },
            "pinned_type": None if self.pinned_type is None else str(self.pinned_type),
            "buffer_size": self.buffer_size,
            "requires_stack_buffer": self.requires_stack_buffer,
            "supports_managed_to_native": self.supports_managed_to_native,
            "supports_native_to_managed": self.supports_native_to_managed,
        }


@dataclass
class ShapeValidationResult:
    descriptor: NativeShapeDescriptor
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not has_fatal(self.diagnostics)


class ShapeValidator:
    def __init__(self, analyzer: BlittabilityAnalyzer):
        self.analyzer = analyzer
        self.catalog = analyzer.catalog

    def validate(self, native_type: TypeRef, managed_type: TypeRef,
                 open_parameters: frozenset[str] = frozenset()) -> ShapeValidationResult:
        """Validate ``native_type`` as the shadow of ``managed_type``.

        Generic shadows have their member signatures bound to the arguments of
        ``native_type``. Types mentioning ``open_parameters`` belong to a generic
        definition; their blittability is checked per instantiation instead.
        """
        diagnostics: list[Diagnostic] = []

        def report(severity: DiagnosticSeverity, code: DiagnosticCode, message: str) -> None:
            diagnostics.append(Diagnostic(severity, code, message, str(managed_type)))

        model = self.catalog.lookup(native_type)
        if model is None:
            report(DiagnosticSeverity.FATAL_DEFINITION, DiagnosticCode.NATIVE_TYPE_UNKNOWN,
                   f"native type '{native_type}' is not visible")
            return ShapeValidationResult(NativeShapeDescriptor(native_type, managed_type), diagnostics)
        bindings = model.bindings_for(native_type)
        if bindings is None:
            report(DiagnosticSeverity.FATAL_DEFINITION, DiagnosticCode.NATIVE_TYPE_UNKNOWN,
                   f"native type '{native_type}' supplies {len(native_type.args)} type arguments, "
                   f"'{model.name}' declares {len(model.type_parameters)}")
            return ShapeValidationResult(NativeShapeDescriptor(native_type, managed_type), diagnostics)
        model = model.bind_members(bindings)
        if model.kind is TypeKind.REFERENCE_TYPE:
            report(DiagnosticSeverity.FATAL_DEFINITION, DiagnosticCode.NATIVE_TYPE_NOT_VALUE_TYPE,
                   f"native type '{native_type}' must be a value type")

        managed_ctor, buffer_ctor = self._find_constructors(model, managed_type)
        to_managed = self._find_to_managed(model, managed_type)
        free_native = self._find_free_native(model, report)
        value_prop, value_blittable = self._check_value(model, report, open_parameters)
        pinnable, pinned_blittable = self._check_pinnable(model, report, open_parameters)
        buffer_size, requires_stack = self._check_buffer_members(model, buffer_ctor, report)

        if managed_ctor is None and buffer_ctor is None and to_managed is None:
            report(DiagnosticSeverity.FATAL_DEFINITION, DiagnosticCode.NO_USABLE_CONVERSION_METHOD,
                   f"'{native_type}' has neither a constructor taking '{managed_type}' "
                   f"nor a {TO_MANAGED}() returning it")

        if buffer_ctor is not None and managed_ctor is None and not requires_stack:
            report(DiagnosticSeverity.ADVISORY, DiagnosticCode.MISSING_ALLOCATING_FALLBACK,
                   f"'{native_type}' only has a caller-buffer constructor; "
                   f"sites without a stack frame cannot construct it")

        if value_prop is None:
            self._check_shadow_blittable(native_type, report, open_parameters)

        dependencies = tuple(
            ref for ref in (value_prop.type_ref if value_prop else None,
                            pinnable.return_type if pinnable else None)
            if ref is not None
        )
        descriptor = NativeShapeDescriptor(
            native_type=native_type,
            managed_type=managed_type,
            managed_constructor=managed_ctor,
            buffer_constructor=buffer_ctor,
            to_managed=to_managed,
            free_native=free_native,
            value_property=value_prop,
            value_blittable=value_blittable,
            pinnable_reference=pinnable,
            pinned_type_blittable=pinned_blittable,
            buffer_size=buffer_size,
            requires_stack_buffer=requires_stack,
            dependencies=dependencies,
        )

        if not has_fatal(diagnostics):
            self._report_downgrades(descriptor, report)

        logger.debug("Shape of %s for %s: %s", native_type, managed_type, descriptor.to_dict())
        return ShapeValidationResult(descriptor, diagnostics)

    def _find_constructors(self, model: TypeVisibilityModel, managed_type: TypeRef):
        managed_ctor = None
        buffer_ctor = None
        for ctor in model.constructors:
            params = ctor.parameter_types
            if not params or params[0] != managed_type:
                continue
            if len(params) == 1:
                managed_ctor = ctor
            elif len(params) == 2 and (params[1] == BUFFER_SPAN or params[1].is_pointer):
                buffer_ctor = ctor
            else:
                logger.debug("Ignoring %s on %s: not a (managed, buffer) constructor", ctor, model.type_ref)
        return managed_ctor, buffer_ctor

    def _find_to_managed(self, model: TypeVisibilityModel, managed_type: TypeRef) -> Optional[MethodInfo]:
        for method in model.find_methods(TO_MANAGED):
            if not method.parameter_types and method.return_type == managed_type and not method.returns_by_ref:
                return method
            logger.debug("Ignoring %s on %s: signature %s does not match", TO_MANAGED, model.type_ref, method)
        return None

    def _find_free_native(self, model: TypeVisibilityModel, report) -> Optional[MethodInfo]:
        for method in model.find_methods(FREE_NATIVE):
            if not method.parameter_types:
                return method
        for method in model.find_methods(FREE_NATIVE):
            report(DiagnosticSeverity.FATAL_DEFINITION, DiagnosticCode.FREE_NATIVE_HAS_PARAMETERS,
                   f"{FREE_NATIVE} on '{model.type_ref}' must take no arguments, found {method}")
        return None

    def _classify_blittable(self, type_ref: TypeRef, report, open_parameters: frozenset[str]) -> bool:
        if type_ref.mentions(open_parameters):
            return True
        try:
            return self.analyzer.classify(type_ref).is_blittable
        except RecursiveLayoutError as e:
            report(DiagnosticSeverity.FATAL_DEFINITION, DiagnosticCode.RECURSIVE_VALUE_TYPE_LAYOUT, str(e))
            return False

    def _check_value(self, model: TypeVisibilityModel, report,
                     open_parameters: frozenset[str]) -> tuple[Optional[PropertyInfo], bool]:
        prop = model.find_property(VALUE)
        if prop is None:
            return None, False
        if prop.by_ref:
            report(DiagnosticSeverity.FATAL_DEFINITION, DiagnosticCode.BY_REF_VALUE_PROPERTY,
                   f"{VALUE} on '{model.type_ref}' returns by reference; "
                   f"expose {GET_PINNABLE_REFERENCE} for pinning instead")
            return prop, False
        if not prop.gettable:
            report(DiagnosticSeverity.FATAL_DEFINITION, DiagnosticCode.VALUE_PROPERTY_NOT_GETTABLE,
                   f"{VALUE} on '{model.type_ref}' must have a getter")
            return prop, False
        blittable = self._classify_blittable(prop.type_ref, report, open_parameters)
        if not blittable:
            report(DiagnosticSeverity.FATAL_DEFINITION, DiagnosticCode.VALUE_PROPERTY_NOT_BLITTABLE,
                   f"{VALUE} on '{model.type_ref}' has non-blittable type '{prop.type_ref}'")
        return prop, blittable

    def _check_pinnable(self, model: TypeVisibilityModel, report,
                        open_parameters: frozenset[str]) -> tuple[Optional[MethodInfo], bool]:
        methods = model.find_methods(GET_PINNABLE_REFERENCE)
        for method in methods:
            if not method.parameter_types and method.returns_by_ref and method.return_type is not None:
                return method, self._classify_blittable(method.return_type, report, open_parameters)
        if methods:
            report(DiagnosticSeverity.ADVISORY, DiagnosticCode.PINNABLE_REFERENCE_SIGNATURE,
                   f"{GET_PINNABLE_REFERENCE} on '{model.type_ref}' must be parameterless "
                   f"and return by reference; pinning is unavailable")
        return None, False

    def _check_buffer_members(self, model: TypeVisibilityModel, buffer_ctor, report) -> tuple[Optional[int], bool]:
        size_const = model.find_constant(BUFFER_SIZE)
        stack_const = model.find_constant(REQUIRES_STACK_BUFFER)

        buffer_size: Optional[int] = None
        if size_const is not None:
            if isinstance(size_const.value, bool) or not isinstance(size_const.value, int):
                report(DiagnosticSeverity.FATAL_DEFINITION, DiagnosticCode.INCONSISTENT_BUFFER_MEMBERS,
                       f"{BUFFER_SIZE} on '{model.type_ref}' must be an integer constant")
            else:
                buffer_size = size_const.value

        requires_stack = False
        if stack_const is not None:
            if not isinstance(stack_const.value, bool):
                report(DiagnosticSeverity.FATAL_DEFINITION, DiagnosticCode.INCONSISTENT_BUFFER_MEMBERS,
                       f"{REQUIRES_STACK_BUFFER} on '{model.type_ref}' must be a boolean constant")
            else:
                requires_stack = stack_const.value

        def inconsistent(message: str) -> None:
            report(DiagnosticSeverity.FATAL_DEFINITION, DiagnosticCode.INCONSISTENT_BUFFER_MEMBERS,
                   f"'{model.type_ref}': {message}")

        if requires_stack and (buffer_size is None or buffer_size <= 0):
            inconsistent(f"{REQUIRES_STACK_BUFFER}=true requires {BUFFER_SIZE} > 0")
        elif buffer_size is not None and buffer_size <= 0:
            inconsistent(f"{BUFFER_SIZE} must be positive, got {buffer_size}")
        if size_const is not None and buffer_ctor is None:
            inconsistent(f"{BUFFER_SIZE} without a (managed, buffer) constructor")
        if buffer_ctor is not None and size_const is None:
            inconsistent(f"(managed, buffer) constructor without {BUFFER_SIZE}")
        if requires_stack and buffer_ctor is None:
            inconsistent(f"{REQUIRES_STACK_BUFFER}=true without a (managed, buffer) constructor")

        return buffer_size, requires_stack

    def _check_shadow_blittable(self, native_type: TypeRef, report, open_parameters: frozenset[str]) -> None:
        # an open shadow such as VecNative<T> is classified as its generic definition
        target = TypeRef(native_type.name) if native_type.mentions(open_parameters) else native_type
        try:
            verdict = self.analyzer.classify(target)
        except RecursiveLayoutError as e:
            report(DiagnosticSeverity.FATAL_DEFINITION, DiagnosticCode.RECURSIVE_VALUE_TYPE_LAYOUT, str(e))
            return
        if not verdict.is_blittable:
            report(DiagnosticSeverity.FATAL_DEFINITION, DiagnosticCode.NATIVE_TYPE_NOT_BLITTABLE,
                   f"native type '{native_type}' is not blittable and has no {VALUE} "
                   f"to unwrap: {verdict.explain()}")

    def _report_downgrades(self, descriptor: NativeShapeDescriptor, report) -> None:
        native = descriptor.native_type
        if not descriptor.supports_managed_to_native:
            report(DiagnosticSeverity.DOWNGRADE, DiagnosticCode.DIRECTION_DOWNGRADED,
                   f"'{native}' has no constructor taking '{descriptor.managed_type}'; "
                   f"managed-to-native is unsupported")
        if descriptor.to_managed is None:
            report(DiagnosticSeverity.DOWNGRADE, DiagnosticCode.DIRECTION_DOWNGRADED,
                   f"'{native}' has no {TO_MANAGED}(); native-to-managed is unsupported")
        elif not descriptor.supports_native_to_managed:
            report(DiagnosticSeverity.DOWNGRADE, DiagnosticCode.DIRECTION_DOWNGRADED,
                   f"{VALUE} on '{native}' has no setter; native-to-managed is unsupported")
