from dataclasses import dataclass
from typing import Optional

from marshalplan import logging as marshalplan_logging
from marshalplan.analyzer import (BlittabilityAnalyzer, BlittabilityVerdict,
                                  RecursiveLayoutError)
from marshalplan.data_types import DeclarationSource, StrategyKind, TypeKind
from marshalplan.diagnostics import (Diagnostic, DiagnosticCode,
                                     DiagnosticSeverity)
from marshalplan.type_model import (TypeDeclarations, TypeRef,
                                    TypeVisibilityModel, UseSite)

logger = marshalplan_logging.get_logger(__name__)

SYNTHESIZED_NATIVE_SUFFIX = "Native"


@dataclass(frozen=True)
class StrategySelector:
    """The single authoritative strategy for one (type, use site) pair."""

    kind: StrategyKind
    source: DeclarationSource
    managed_type: TypeRef
    native_type: Optional[TypeRef] = None
    # shadow type still has to be synthesized by the code generator
    synthesized: bool = False
    verdict: Optional[BlittabilityVerdict] = None
    diagnostics: tuple[Diagnostic, ...] = ()

    @property
    def is_use_site_override(self) -> bool:
        return self.source is DeclarationSource.USE_SITE

    @property
    def eligible(self) -> bool:
        return self.kind is not StrategyKind.INELIGIBLE


def synthesized_native_type(managed_type: TypeRef) -> TypeRef:
    return TypeRef(f"{managed_type.name}{SYNTHESIZED_NATIVE_SUFFIX}", managed_type.args)


class AttributeResolver:
    """Resolve opt-in declarations into one strategy.

    Precedence, highest first: use-site override, type-level native type,
    type-level blittable, generated marshalling, intrinsic primitives. A
    reference type is only rejected when blittable or generated would win.
    Anything else is ineligible, decided before any field inspection.
    """

    def __init__(self, analyzer: BlittabilityAnalyzer):
        self.analyzer = analyzer
        self.catalog = analyzer.catalog

    def resolve(self, managed_type: TypeRef, use_site: Optional[UseSite] = None) -> StrategySelector:
        model = self.catalog.lookup(managed_type)
        declarations = model.declarations if model is not None else TypeDeclarations()
        site_id = use_site.site_id if use_site is not None else None

        def fatal(code: DiagnosticCode, message: str, source: DeclarationSource) -> StrategySelector:
            diagnostic = Diagnostic(DiagnosticSeverity.FATAL_DEFINITION, code, message,
                                    str(managed_type), site_id)
            logger.debug("%s", diagnostic)
            return StrategySelector(StrategyKind.INELIGIBLE, source, managed_type, diagnostics=(diagnostic,))

        if use_site is not None and use_site.marshal_using is not None:
            if declarations.any:
                return fatal(
                    DiagnosticCode.CONFLICTING_USE_SITE_OVERRIDE,
                    f"use-site native type '{use_site.marshal_using}' contradicts the type-level "
                    f"declaration of '{managed_type}'",
                    DeclarationSource.USE_SITE,
                )
            return StrategySelector(StrategyKind.NATIVE_SHADOW, DeclarationSource.USE_SITE,
                                    managed_type, native_type=use_site.marshal_using)

        if declarations.native_type is not None:
            return StrategySelector(StrategyKind.NATIVE_SHADOW, DeclarationSource.NATIVE_MARSHALLING, managed_type,
                                    native_type=self._bind_native_type(declarations.native_type, managed_type, model))

        if model is not None and model.kind is TypeKind.REFERENCE_TYPE and (
                declarations.blittable or declarations.generate_marshalling):
            return fatal(
                DiagnosticCode.REFERENCE_TYPE_DECLARATION,
                f"reference type '{managed_type}' cannot be declared blittable or generated; "
                f"supply a native type instead",
                DeclarationSource.BLITTABLE if declarations.blittable else DeclarationSource.GENERATED,
            )

        if declarations.blittable:
            return StrategySelector(StrategyKind.BLITTABLE, DeclarationSource.BLITTABLE, managed_type)

        if declarations.generate_marshalling:
            return self._resolve_generated(managed_type, fatal)

        if self._is_intrinsic(managed_type, model):
            return StrategySelector(StrategyKind.BLITTABLE, DeclarationSource.INTRINSIC, managed_type)

        return fatal(
            DiagnosticCode.NOT_ELIGIBLE,
            f"'{managed_type}' is not eligible for by-value native passing: it declares "
            f"neither blittable, a native type, nor generated marshalling",
            DeclarationSource.NONE,
        )

    def _bind_native_type(self, native_type: TypeRef, managed_type: TypeRef,
                          model: Optional[TypeVisibilityModel]) -> TypeRef:
        # VecNative<T> declared on Vec<T> names VecNative<int> at a Vec<int> site
        bindings = model.bindings_for(managed_type) if model is not None else None
        return native_type.substitute(bindings) if bindings else native_type

    def _is_intrinsic(self, managed_type: TypeRef, model: Optional[TypeVisibilityModel]) -> bool:
        if self.analyzer.is_intrinsic_blittable(managed_type):
            return True
        if model is not None and model.kind is TypeKind.ENUM:
            return self.analyzer.is_intrinsic_blittable(model.underlying or TypeRef("int"))
        return False

    def _resolve_generated(self, managed_type: TypeRef, fatal) -> StrategySelector:
        try:
            verdict = self.analyzer.classify(managed_type)
        except RecursiveLayoutError as e:
            return fatal(DiagnosticCode.RECURSIVE_VALUE_TYPE_LAYOUT, str(e), DeclarationSource.GENERATED)

        if verdict.is_blittable:
            logger.debug("Generated marshalling for %s resolved to blittable", managed_type)
            return StrategySelector(StrategyKind.BLITTABLE, DeclarationSource.GENERATED,
                                    managed_type, synthesized=True, verdict=verdict)
        if verdict.is_indeterminate:
            return fatal(
                DiagnosticCode.INSUFFICIENT_FIELD_VISIBILITY,
                f"cannot generate marshalling for '{managed_type}': {verdict.explain()}",
                DeclarationSource.GENERATED,
            )
        native = synthesized_native_type(managed_type)
        logger.debug("Generated marshalling for %s needs synthesized shadow %s", managed_type, native)
        return StrategySelector(StrategyKind.NATIVE_SHADOW, DeclarationSource.GENERATED, managed_type,
                                native_type=native, synthesized=True, verdict=verdict)
