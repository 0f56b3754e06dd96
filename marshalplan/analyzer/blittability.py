import threading
from dataclasses import dataclass
from typing import Optional

from marshalplan import logging as marshalplan_logging
from marshalplan.data_types import TypeKind, VerdictKind
from marshalplan.type_model import TypeCatalog, TypeRef, TypeVisibilityModel

logger = marshalplan_logging.get_logger(__name__)

DEFAULT_BLITTABLE_PRIMITIVES: tuple[str, ...] = (
    "sbyte",
    "byte",
    "short",
    "ushort",
    "int",
    "uint",
    "long",
    "ulong",
    "nint",
    "nuint",
    "float",
    "double",
)

# A "contains no managed references" check accepts both of these; their
# native representation is not fixed, so they are never blittable on their own.
DEFAULT_NEVER_BLITTABLE: tuple[str, ...] = ("bool", "char")


class RecursiveLayoutError(RuntimeError):
    def __init__(self, chain: tuple[str, ...]):
        self.chain = chain
        super().__init__(f"recursive value-type layout: {' -> '.join(chain)}")


@dataclass(frozen=True)
class BlittabilityVerdict:
    kind: VerdictKind
    reasons: tuple[str, ...] = ()
    # Failed only because a substituted generic argument is not blittable.
    argument_failure: bool = False

    @property
    def is_blittable(self) -> bool:
        return self.kind is VerdictKind.BLITTABLE

    @property
    def is_indeterminate(self) -> bool:
        return self.kind is VerdictKind.INDETERMINATE_ERASED_INFO

    def explain(self) -> str:
        return "; ".join(self.reasons)

    @classmethod
    def blittable(cls, *reasons: str) -> "BlittabilityVerdict":
        return cls(VerdictKind.BLITTABLE, tuple(reasons))

    @classmethod
    def not_blittable(cls, reason: str, inner: Optional["BlittabilityVerdict"] = None,
                      argument_failure: bool = False) -> "BlittabilityVerdict":
        chain = (reason,) + (inner.reasons if inner is not None else ())
        return cls(VerdictKind.NOT_BLITTABLE, chain, argument_failure)

    @classmethod
    def indeterminate(cls, reason: str, inner: Optional["BlittabilityVerdict"] = None) -> "BlittabilityVerdict":
        chain = (reason,) + (inner.reasons if inner is not None else ())
        return cls(VerdictKind.INDETERMINATE_ERASED_INFO, chain)


class VerdictCache:
    """Write-once verdict store shared by every worker of one resolution pass."""

    def __init__(self):
        self._lock = threading.Lock()
        self._verdicts: dict[tuple[str, str], BlittabilityVerdict] = {}

    def get(self, key: tuple[str, str]) -> Optional[BlittabilityVerdict]:
        with self._lock:
            return self._verdicts.get(key)

    def record(self, key: tuple[str, str], verdict: BlittabilityVerdict) -> BlittabilityVerdict:
        # first writer wins; later writers get the recorded value back
        with self._lock:
            return self._verdicts.setdefault(key, verdict)

    def __len__(self) -> int:
        with self._lock:
            return len(self._verdicts)


class BlittabilityAnalyzer:
    def __init__(self, catalog: TypeCatalog, cache: Optional[VerdictCache] = None,
                 config: Optional[dict] = None):
        self.catalog = catalog
        self.cache = cache if cache is not None else VerdictCache()
        analysis_cfg = (config or {}).get("analysis", {})
        self.never_blittable = frozenset(
            analysis_cfg.get("never_blittable_primitives", DEFAULT_NEVER_BLITTABLE))
        self.blittable_primitives = frozenset(
            analysis_cfg.get("blittable_primitives", DEFAULT_BLITTABLE_PRIMITIVES)
        ) - self.never_blittable

    def is_intrinsic_blittable(self, type_ref: TypeRef) -> bool:
        return type_ref.is_pointer or (not type_ref.args and type_ref.name in self.blittable_primitives)

    def classify(self, type_ref: TypeRef, visited: tuple[str, ...] = ()) -> BlittabilityVerdict:
        """Classify ``type_ref``; ``visited`` is the chain of value types on the current call stack."""
        key = (self.catalog.context, str(type_ref))
        if str(type_ref) in visited:
            raise RecursiveLayoutError(visited + (str(type_ref),))
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        verdict = self._classify_uncached(type_ref, visited)
        logger.debug("%s classified %s (%s)", type_ref, verdict.kind.value, verdict.explain())
        return self.cache.record(key, verdict)

    def _classify_uncached(self, type_ref: TypeRef, visited: tuple[str, ...]) -> BlittabilityVerdict:
        if not type_ref.args and type_ref.name in self.never_blittable:
            return BlittabilityVerdict.not_blittable(f"'{type_ref}' is never automatically blittable")
        if self.is_intrinsic_blittable(type_ref):
            return BlittabilityVerdict.blittable(f"'{type_ref}' is a primitive of fixed size")

        model = self.catalog.lookup(type_ref)
        if model is None:
            return BlittabilityVerdict.indeterminate(f"no type information for '{type_ref}'")

        if model.kind is TypeKind.PRIMITIVE:
            return BlittabilityVerdict.not_blittable(f"primitive '{type_ref}' has no fixed native layout")
        if model.kind is TypeKind.REFERENCE_TYPE:
            return BlittabilityVerdict.not_blittable(f"'{type_ref}' is a reference type")
        if model.kind is TypeKind.ENUM:
            underlying = model.underlying or TypeRef("int")
            inner = self.classify(underlying, visited)
            if inner.is_blittable:
                return BlittabilityVerdict.blittable(f"enum '{type_ref}' over '{underlying}'")
            return BlittabilityVerdict(
                inner.kind, (f"enum '{type_ref}' has underlying type '{underlying}'",) + inner.reasons)

        return self._classify_composite(type_ref, model, visited + (str(type_ref),))

    def _classify_composite(self, type_ref: TypeRef, model: TypeVisibilityModel,
                            visited: tuple[str, ...]) -> BlittabilityVerdict:
        bindings = model.bindings_for(type_ref)
        if bindings is None:
            return BlittabilityVerdict.not_blittable(
                f"'{type_ref}' supplies {len(type_ref.args)} type arguments, "
                f"'{model.name}' declares {len(model.type_parameters)}")
        params = model.type_parameter_names()

        if model.has_erased_fields:
            if not model.declarations.blittable:
                return BlittabilityVerdict.indeterminate(f"insufficient field visibility for '{type_ref}'")
            # no field positions to inspect: every argument must hold up on its own
            for arg in type_ref.args:
                inner = self.classify(arg, visited)
                if not inner.is_blittable:
                    return BlittabilityVerdict.not_blittable(
                        f"type argument '{arg}' of '{type_ref}' is not blittable", inner, argument_failure=True)
            return BlittabilityVerdict.blittable(f"'{type_ref}' is declared blittable")

        for field in model.fields:
            field_type = field.type_ref
            in_param_position = bool(params) and field_type.mentions(params)

            if in_param_position and not type_ref.args:
                # generic definition: parameter-typed fields are pending
                if not field_type.args:
                    param = model.type_parameter(field_type.name)
                    if param is not None and not param.can_be_value_type:
                        return BlittabilityVerdict.not_blittable(
                            f"field '{field.name}' of '{type_ref}' has type parameter "
                            f"'{param.name}' that is never a value type")
                    continue
                field_type = TypeRef(field_type.name)

            bound = field_type.substitute(bindings)
            inner = self.classify(bound, visited)
            if inner.is_blittable:
                continue
            reason = f"field '{field.name}' of '{type_ref}' has type '{bound}'"
            if inner.is_indeterminate:
                return BlittabilityVerdict.indeterminate(reason, inner)
            return BlittabilityVerdict.not_blittable(
                reason, inner, argument_failure=in_param_position and bool(type_ref.args))

        return BlittabilityVerdict.blittable(f"all fields of '{type_ref}' are blittable")
