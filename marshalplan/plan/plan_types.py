from dataclasses import dataclass
from typing import Optional

from marshalplan.data_types import (BufferKind, DeclarationSource,
                                    MarshallingDirection, StrategyKind)
from marshalplan.diagnostics import Diagnostic, has_fatal
from marshalplan.type_model import TypeRef


@dataclass(frozen=True)
class BufferStrategy:
    kind: BufferKind = BufferKind.NONE
    size: int = 0

    def __post_init__(self) -> None:
        if self.kind is BufferKind.REQUIRED_STACK and self.size <= 0:
            raise ValueError("a required stack buffer needs a positive size")

    @classmethod
    def none(cls) -> "BufferStrategy":
        return cls()

    @classmethod
    def optional_stack(cls, size: int) -> "BufferStrategy":
        return cls(BufferKind.OPTIONAL_STACK, size)

    @classmethod
    def required_stack(cls, size: int) -> "BufferStrategy":
        return cls(BufferKind.REQUIRED_STACK, size)

    def __str__(self) -> str:
        if self.kind is BufferKind.NONE:
            return "none"
        return f"{self.kind.value}({self.size})"


@dataclass(frozen=True)
class MarshallingPlan:
    """Everything the code generator needs for one (managed type, use site) pair.

    ``native_type`` is the final boundary representation: the shadow type,
    or the type of its ``Value`` when ``unwraps_value`` is set, in which
    case construction still goes through ``shadow_type`` first.
    """

    managed_type: TypeRef
    site_id: Optional[str]
    strategy: StrategyKind
    source: DeclarationSource
    managed_to_native: bool = False
    native_to_managed: bool = False
    release_required: bool = False
    pinning_eligible: bool = False
    pinned_type: Optional[TypeRef] = None
    buffer: BufferStrategy = BufferStrategy()
    native_type: Optional[TypeRef] = None
    shadow_type: Optional[TypeRef] = None
    unwraps_value: bool = False
    synthesized_shadow: bool = False
    diagnostics: tuple[Diagnostic, ...] = ()

    @property
    def valid(self) -> bool:
        return not has_fatal(self.diagnostics)

    @property
    def directions(self) -> frozenset[MarshallingDirection]:
        supported = set()
        if self.managed_to_native:
            supported.add(MarshallingDirection.MANAGED_TO_NATIVE)
        if self.native_to_managed:
            supported.add(MarshallingDirection.NATIVE_TO_MANAGED)
        return frozenset(supported)

    def supports(self, direction: MarshallingDirection) -> bool:
        return direction in self.directions

    def to_dict(self) -> dict:
        return {
            "managed_type": str(self.managed_type),
            "site": self.site_id,
            "strategy": self.strategy.value,
            "source": self.source.value,
            "valid": self.valid,
            "managed_to_native": self.managed_to_native,
            "native_to_managed": self.native_to_managed,
            "release_required": self.release_required,
            "pinning_eligible": self.pinning_eligible,
            "pinned_type": None if self.pinned_type is None else str(self.pinned_type),
            "buffer": {"kind": self.buffer.kind.value, "size": self.buffer.size},
            "native_type": None if self.native_type is None else str(self.native_type),
            "shadow_type": None if self.shadow_type is None else str(self.shadow_type),
            "unwraps_value": self.unwraps_value,
            "synthesized_shadow": self.synthesized_shadow,
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }
