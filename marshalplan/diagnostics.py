from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterable, Optional


class DiagnosticSeverity(Enum):
    FATAL_DEFINITION = "fatal_definition"
    FATAL_USE = "fatal_use"
    DOWNGRADE = "downgrade"
    ADVISORY = "advisory"

    @property
    def is_fatal(self) -> bool:
        return self in (DiagnosticSeverity.FATAL_DEFINITION, DiagnosticSeverity.FATAL_USE)


class DiagnosticCode(Enum):
    # definition-site
    NO_USABLE_CONVERSION_METHOD = auto()
    RECURSIVE_VALUE_TYPE_LAYOUT = auto()
    BY_REF_VALUE_PROPERTY = auto()
    VALUE_PROPERTY_NOT_GETTABLE = auto()
    VALUE_PROPERTY_NOT_BLITTABLE = auto()
    FREE_NATIVE_HAS_PARAMETERS = auto()
    PINNABLE_REFERENCE_SIGNATURE = auto()
    INCONSISTENT_BUFFER_MEMBERS = auto()
    NATIVE_TYPE_NOT_BLITTABLE = auto()
    NATIVE_TYPE_NOT_VALUE_TYPE = auto()
    NATIVE_TYPE_UNKNOWN = auto()
    CONFLICTING_USE_SITE_OVERRIDE = auto()
    NOT_ELIGIBLE = auto()
    DECLARED_BLITTABLE_NOT_BLITTABLE = auto()
    INSUFFICIENT_FIELD_VISIBILITY = auto()
    REFERENCE_TYPE_DECLARATION = auto()
    # use-site
    DIRECTION_UNSUPPORTED = auto()
    NON_BLITTABLE_TYPE_ARGUMENT = auto()
    STACK_BUFFER_UNAVAILABLE = auto()
    NO_ALLOCATING_CONSTRUCTOR = auto()
    RESOLUTION_FAILED = auto()
    # downgrade / advisory
    DIRECTION_DOWNGRADED = auto()
    PINNING_TYPE_MISMATCH = auto()
    MISSING_ALLOCATING_FALLBACK = auto()


@dataclass(frozen=True)
class Diagnostic:
    severity: DiagnosticSeverity
    code: DiagnosticCode
    message: str
    type_name: str = ""
    site_id: Optional[str] = None

    @property
    def is_fatal(self) -> bool:
        return self.severity.is_fatal

    def at_site(self, site_id: Optional[str]) -> "Diagnostic":
        if site_id is None or self.site_id == site_id:
            return self
        return Diagnostic(self.severity, self.code, self.message, self.type_name, site_id)

    def to_dict(self) -> dict:
        return {
            "severity": self.severity.value,
            "code": self.code.name,
            "message": self.message,
            "type": self.type_name,
            "site": self.site_id,
        }

    def __str__(self) -> str:
        where = self.type_name if self.site_id is None else f"{self.type_name} @ {self.site_id}"
        return f"[{self.severity.value}] {self.code.name}: {where}: {self.message}"


def has_fatal(diagnostics: Iterable[Diagnostic]) -> bool:
    return any(d.is_fatal for d in diagnostics)
