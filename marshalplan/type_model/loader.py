import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from jsonschema import Draft202012Validator  # type: ignore

from marshalplan import logging as marshalplan_logging, utils
from marshalplan.data_types import FieldVisibility, TypeKind, UseSiteKind

from .catalog import TypeCatalog
from .type_info import (ConstantInfo, ConstructorInfo, FieldInfo, MethodInfo,
                        PropertyInfo, TypeDeclarations, TypeParameter,
                        TypeVisibilityModel, UseSite, parse_type_ref)

logger = marshalplan_logging.get_logger(__name__)

_SCHEMA_CACHE: Optional[dict] = None


@dataclass
class TypeGraph:
    catalog: TypeCatalog
    use_sites: list[UseSite]


def _load_schema() -> dict:
    global _SCHEMA_CACHE
    if _SCHEMA_CACHE is None:
        _SCHEMA_CACHE = json.loads(utils.load_type_graph_schema_text())
    return _SCHEMA_CACHE


def validate_type_graph(data: dict) -> Tuple[bool, str]:
    """Validate a raw type-graph document against the packaged JSON Schema.

    Returns (ok, msg); msg is ``schema:<error>`` on failure.
    """
    try:
        Draft202012Validator(_load_schema()).validate(data)
        return True, ""
    except Exception as e:
        return False, f"schema:{getattr(e, 'message', e)}"


def _parse_model(entry: dict) -> TypeVisibilityModel:
    decl = entry.get("declarations", {})
    native = decl.get("native_type")
    declarations = TypeDeclarations(
        generate_marshalling=decl.get("generate_marshalling", False),
        blittable=decl.get("blittable", False),
        native_type=parse_type_ref(native) if native else None,
    )
    fields = tuple(
        FieldInfo(
            name=f["name"],
            type_ref=parse_type_ref(f["type"]),
            visibility=(FieldVisibility.ERASED_PLACEHOLDER
                        if f.get("visibility") == "erased"
                        else FieldVisibility.FULLY_VISIBLE),
        )
        for f in entry.get("fields", [])
    )
    underlying = entry.get("underlying")
    return TypeVisibilityModel(
        type_ref=parse_type_ref(entry["name"]),
        kind=TypeKind(entry.get("kind", TypeKind.VALUE_TYPE.value)),
        fields=fields,
        type_parameters=tuple(
            TypeParameter(p["name"], p.get("can_be_value_type", True))
            for p in entry.get("type_parameters", [])
        ),
        declarations=declarations,
        constructors=tuple(
            ConstructorInfo(tuple(parse_type_ref(p) for p in c["parameters"]))
            for c in entry.get("constructors", [])
        ),
        methods=tuple(
            MethodInfo(
                name=m["name"],
                parameter_types=tuple(parse_type_ref(p) for p in m.get("parameters", [])),
                return_type=parse_type_ref(m["returns"]) if m.get("returns") else None,
                returns_by_ref=m.get("by_ref", False),
            )
            for m in entry.get("methods", [])
        ),
        properties=tuple(
            PropertyInfo(
                name=p["name"],
                type_ref=parse_type_ref(p["type"]),
                gettable=p.get("get", True),
                settable=p.get("set", True),
                by_ref=p.get("by_ref", False),
            )
            for p in entry.get("properties", [])
        ),
        constants=tuple(ConstantInfo(c["name"], c["value"]) for c in entry.get("constants", [])),
        underlying=parse_type_ref(underlying) if underlying else None,
    )


def _parse_use_site(entry: dict) -> UseSite:
    override = entry.get("marshal_using")
    return UseSite(
        site_id=entry["id"],
        managed_type=parse_type_ref(entry["type"]),
        kind=UseSiteKind(entry.get("kind", UseSiteKind.IN.value)),
        marshal_using=parse_type_ref(override) if override else None,
        stack_frame_available=entry.get("stack_frame_available", False),
    )


def parse_type_graph(data: dict) -> TypeGraph:
    ok, msg = validate_type_graph(data)
    if not ok:
        raise ValueError(f"Invalid type graph: {msg}")

    catalog = TypeCatalog(
        (_parse_model(entry) for entry in data["types"]),
        context=data.get("context", "default"),
    )
    use_sites = [_parse_use_site(entry) for entry in data.get("use_sites", [])]
    seen: set[str] = set()
    for site in use_sites:
        if site.site_id in seen:
            raise ValueError(f"Duplicate use site id: {site.site_id}")
        seen.add(site.site_id)

    logger.debug("Loaded %d types and %d use sites (context %s)",
                 len(catalog), len(use_sites), catalog.context)
    return TypeGraph(catalog=catalog, use_sites=use_sites)


def load_type_graph(path: str) -> TypeGraph:
    graph_path = Path(path).expanduser()
    if not graph_path.is_file():
        raise FileNotFoundError(f"Could not find type graph {graph_path}")
    with open(graph_path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return parse_type_graph(data)
