from dataclasses import replace
from typing import Optional

from marshalplan import logging as marshalplan_logging
from marshalplan.analyzer import BlittabilityAnalyzer, RecursiveLayoutError
from marshalplan.data_types import (BufferKind, DeclarationSource,
                                    MarshallingDirection, StrategyKind)
from marshalplan.diagnostics import (Diagnostic, DiagnosticCode,
                                     DiagnosticSeverity, has_fatal)
from marshalplan.resolver import StrategySelector
from marshalplan.shape import NativeShapeDescriptor, ShapeValidator
from marshalplan.type_model import TypeRef, UseSite

from .plan_types import BufferStrategy, MarshallingPlan

logger = marshalplan_logging.get_logger(__name__)


class MarshallingPlanBuilder:
    def __init__(self, analyzer: BlittabilityAnalyzer, shape_validator: Optional[ShapeValidator] = None):
        self.analyzer = analyzer
        self.shape_validator = shape_validator if shape_validator is not None else ShapeValidator(analyzer)

    def build(self, managed_type: TypeRef, selector: StrategySelector,
              use_site: Optional[UseSite] = None) -> MarshallingPlan:
        site_id = use_site.site_id if use_site is not None else None
        diagnostics: list[Diagnostic] = [d.at_site(site_id) for d in selector.diagnostics]

        def report(severity: DiagnosticSeverity, code: DiagnosticCode, message: str) -> None:
            diagnostics.append(Diagnostic(severity, code, message, str(managed_type), site_id))

        if selector.kind is StrategyKind.INELIGIBLE:
            fields: dict = {}
        elif selector.kind is StrategyKind.BLITTABLE:
            fields = self._blittable_fields(managed_type, selector, report)
        else:
            fields = self._native_fields(managed_type, selector, use_site, diagnostics, report)

        plan = MarshallingPlan(
            managed_type=managed_type,
            site_id=site_id,
            strategy=selector.kind,
            source=selector.source,
            **fields,
        )

        if use_site is not None and not has_fatal(diagnostics):
            self._check_use_site(plan, use_site, report)

        plan = replace(plan, diagnostics=tuple(diagnostics))
        logger.debug("Plan for %s at %s: valid=%s directions=%s native=%s",
                     managed_type, site_id, plan.valid,
                     sorted(d.value for d in plan.directions), plan.native_type)
        return plan

    def _blittable_fields(self, managed_type: TypeRef, selector: StrategySelector, report) -> dict:
        if selector.source is DeclarationSource.BLITTABLE:
            # the declaration is checked against every instantiation it is used with
            try:
                verdict = self.analyzer.classify(managed_type)
            except RecursiveLayoutError as e:
                report(DiagnosticSeverity.FATAL_DEFINITION, DiagnosticCode.RECURSIVE_VALUE_TYPE_LAYOUT, str(e))
                return {}
            if verdict.argument_failure:
                report(DiagnosticSeverity.FATAL_USE, DiagnosticCode.NON_BLITTABLE_TYPE_ARGUMENT,
                       f"'{managed_type}' substitutes a non-blittable type argument: {verdict.explain()}")
                return {}
            if not verdict.is_blittable:
                report(DiagnosticSeverity.FATAL_DEFINITION, DiagnosticCode.DECLARED_BLITTABLE_NOT_BLITTABLE,
                       f"'{managed_type}' is declared blittable but {verdict.explain()}")
                return {}

        return {
            "managed_to_native": True,
            "native_to_managed": True,
            "native_type": managed_type,
        }

    def _native_fields(self, managed_type: TypeRef, selector: StrategySelector,
                       use_site: Optional[UseSite], diagnostics: list[Diagnostic], report) -> dict:
        native_type = selector.native_type
        if native_type is None:
            raise ValueError(f"native shadow strategy for {managed_type} has no native type")

        if selector.synthesized:
            # the generator emits the full contract for shadows it synthesizes
            return {
                "managed_to_native": True,
                "native_to_managed": True,
                "release_required": True,
                "native_type": native_type,
                "shadow_type": native_type,
                "synthesized_shadow": True,
            }

        shape_managed, open_parameters = self._shape_target(managed_type)
        result = self.shape_validator.validate(native_type, shape_managed, open_parameters)
        site_id = use_site.site_id if use_site is not None else None
        diagnostics.extend(d.at_site(site_id) for d in result.diagnostics)
        descriptor = result.descriptor
        if not result.valid:
            return {"native_type": native_type, "shadow_type": native_type}

        final_type = descriptor.value_type if descriptor.unwraps_value else native_type
        pinning_eligible = self._pinning_eligible(descriptor, final_type, selector.is_use_site_override, report)
        buffer = self._buffer_strategy(descriptor)

        if use_site is not None and MarshallingDirection.MANAGED_TO_NATIVE in use_site.kind.required_directions():
            self._check_buffer_at_site(descriptor, buffer, use_site, report)

        return {
            "managed_to_native": descriptor.supports_managed_to_native,
            "native_to_managed": descriptor.supports_native_to_managed,
            "release_required": descriptor.release_required,
            "pinning_eligible": pinning_eligible,
            "pinned_type": descriptor.pinned_type if pinning_eligible else None,
            "buffer": buffer,
            "native_type": final_type,
            "shadow_type": native_type,
            "unwraps_value": descriptor.unwraps_value,
        }

    def _shape_target(self, managed_type: TypeRef) -> tuple[TypeRef, frozenset[str]]:
        model = self.analyzer.catalog.lookup(managed_type)
        if model is None or managed_type.args or not model.type_parameters:
            return managed_type, frozenset()
        # a generic definition is checked against its own open parameters
        return model.open_type_ref(), frozenset(model.type_parameter_names())

    def _pinning_eligible(self, descriptor: NativeShapeDescriptor, final_type: TypeRef,
                          use_site_override: bool, report) -> bool:
        pointee = descriptor.pinned_type
        if pointee is None:
            return False
        if not descriptor.pinned_type_blittable:
            report(DiagnosticSeverity.ADVISORY, DiagnosticCode.PINNING_TYPE_MISMATCH,
                   f"pinned type '{pointee}' is not blittable; marshalling without pinning")
            return False
        if pointee == final_type:
            return True
        # type-level declarations also accept a match before unwrapping
        if not use_site_override and pointee == descriptor.native_type:
            return True
        report(DiagnosticSeverity.ADVISORY, DiagnosticCode.PINNING_TYPE_MISMATCH,
               f"pinned type '{pointee}' does not match native type '{final_type}'; "
               f"marshalling without pinning")
        return False

    def _buffer_strategy(self, descriptor: NativeShapeDescriptor) -> BufferStrategy:
        size = descriptor.buffer_size or 0
        if descriptor.requires_stack_buffer and size > 0:
            return BufferStrategy.required_stack(size)
        if descriptor.buffer_constructor is not None and size > 0:
            return BufferStrategy.optional_stack(size)
        return BufferStrategy.none()

    def _check_buffer_at_site(self, descriptor: NativeShapeDescriptor, buffer: BufferStrategy,
                              use_site: UseSite, report) -> None:
        if use_site.stack_frame_available:
            return
        if buffer.kind is BufferKind.REQUIRED_STACK:
            report(DiagnosticSeverity.FATAL_USE, DiagnosticCode.STACK_BUFFER_UNAVAILABLE,
                   f"'{descriptor.native_type}' requires a stack buffer of {buffer.size} bytes "
                   f"but use site '{use_site.site_id}' has no stack frame to provide it")
        elif buffer.kind is BufferKind.OPTIONAL_STACK and descriptor.managed_constructor is None:
            report(DiagnosticSeverity.FATAL_USE, DiagnosticCode.NO_ALLOCATING_CONSTRUCTOR,
                   f"'{descriptor.native_type}' can only be constructed into a caller buffer "
                   f"and use site '{use_site.site_id}' has no stack frame")

    def _check_use_site(self, plan: MarshallingPlan, use_site: UseSite, report) -> None:
        for direction in sorted(use_site.kind.required_directions(), key=lambda d: d.value):
            if not plan.supports(direction):
                report(DiagnosticSeverity.FATAL_USE, DiagnosticCode.DIRECTION_UNSUPPORTED,
                       f"use site '{use_site.site_id}' ({use_site.kind.value}) needs "
                       f"{direction.value}, which the plan for '{plan.managed_type}' does not support")
