from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, Optional

from marshalplan import logging as marshalplan_logging
from marshalplan.analyzer import BlittabilityAnalyzer, VerdictCache
from marshalplan.data_types import DeclarationSource, StrategyKind
from marshalplan.diagnostics import (Diagnostic, DiagnosticCode,
                                     DiagnosticSeverity)
from marshalplan.plan import MarshallingPlan, MarshallingPlanBuilder
from marshalplan.resolver import AttributeResolver
from marshalplan.shape import ShapeValidator
from marshalplan.type_model import TypeCatalog, TypeRef, UseSite

logger = marshalplan_logging.get_logger(__name__)

DEFAULT_MAX_WORKERS = 4


@dataclass
class ResolutionResult:
    plans: list[MarshallingPlan]
    definition_diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def any_fatal(self) -> bool:
        return (any(not plan.valid for plan in self.plans)
                or any(d.is_fatal for d in self.definition_diagnostics))

    def plan_for(self, site_id: str) -> Optional[MarshallingPlan]:
        for plan in self.plans:
            if plan.site_id == site_id:
                return plan
        return None


class ResolutionPass:
    """One resolution pass over the type graph of one compilation.

    Use sites are independent, so they are resolved on a thread pool; the
    only shared state is the write-once verdict cache. A failure while
    resolving one site is attached to that site and never stops the others.
    """

    def __init__(self, catalog: TypeCatalog, config: Optional[dict] = None,
                 max_workers: Optional[int] = None):
        self.catalog = catalog
        self.config = config or {}
        self.cache = VerdictCache()
        self.analyzer = BlittabilityAnalyzer(catalog, self.cache, self.config)
        self.shape_validator = ShapeValidator(self.analyzer)
        self.resolver = AttributeResolver(self.analyzer)
        self.builder = MarshallingPlanBuilder(self.analyzer, self.shape_validator)
        if max_workers is None:
            max_workers = self.config.get("resolution", {}).get("max_workers", DEFAULT_MAX_WORKERS)
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")
        self.max_workers = max_workers

    def resolve_site(self, use_site: UseSite) -> MarshallingPlan:
        selector = self.resolver.resolve(use_site.managed_type, use_site)
        return self.builder.build(use_site.managed_type, selector, use_site)

    def check_definition(self, type_ref: TypeRef) -> MarshallingPlan:
        selector = self.resolver.resolve(type_ref)
        return self.builder.build(type_ref, selector)

    def _resolve_site_safely(self, use_site: UseSite) -> MarshallingPlan:
        try:
            plan = self.resolve_site(use_site)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Resolution failed for %s at %s: %s",
                         use_site.managed_type, use_site.site_id, exc, exc_info=True)
            diagnostic = Diagnostic(DiagnosticSeverity.FATAL_USE, DiagnosticCode.RESOLUTION_FAILED,
                                    str(exc), str(use_site.managed_type), use_site.site_id)
            return MarshallingPlan(
                managed_type=use_site.managed_type,
                site_id=use_site.site_id,
                strategy=StrategyKind.INELIGIBLE,
                source=DeclarationSource.NONE,
                diagnostics=(diagnostic,),
            )
        self._log_plan(plan)
        return plan

    def _log_plan(self, plan: MarshallingPlan) -> None:
        for diagnostic in plan.diagnostics:
            log = marshalplan_logging.context_logger(logger, diagnostic.type_name, diagnostic.site_id)
            if diagnostic.is_fatal:
                log.error("%s: %s", diagnostic.code.name, diagnostic.message)
            elif diagnostic.severity is DiagnosticSeverity.ADVISORY:
                log.warning("%s: %s", diagnostic.code.name, diagnostic.message)
            else:
                log.info("%s: %s", diagnostic.code.name, diagnostic.message)

    def _declared_types(self) -> list[TypeRef]:
        return [model.type_ref for model in self.catalog if model.declarations.any]

    def check_definitions(self, type_refs: Optional[Iterable[TypeRef]] = None) -> list[Diagnostic]:
        diagnostics: list[Diagnostic] = []
        for type_ref in (self._declared_types() if type_refs is None else type_refs):
            try:
                plan = self.check_definition(type_ref)
            except Exception as exc:  # pylint: disable=broad-except
                logger.error("Definition check failed for %s: %s", type_ref, exc, exc_info=True)
                diagnostics.append(Diagnostic(DiagnosticSeverity.FATAL_DEFINITION,
                                              DiagnosticCode.RESOLUTION_FAILED, str(exc), str(type_ref)))
                continue
            diagnostics.extend(plan.diagnostics)
        return diagnostics

    def run(self, use_sites: Iterable[UseSite], check_definitions: bool = True) -> ResolutionResult:
        use_sites = list(use_sites)
        logger.info("Resolving %d use sites over %d types (context %s, %d workers)",
                    len(use_sites), len(self.catalog), self.catalog.context, self.max_workers)

        definition_diagnostics = self.check_definitions() if check_definitions else []
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            plans = list(pool.map(self._resolve_site_safely, use_sites))

        result = ResolutionResult(plans=plans, definition_diagnostics=definition_diagnostics)
        invalid = sum(1 for plan in plans if not plan.valid)
        logger.info("Resolved %d plans, %d invalid, %d verdicts cached", len(plans), invalid, len(self.cache))
        return result
