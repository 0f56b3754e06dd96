from dataclasses import replace
from typing import Iterable, Iterator, Optional

from marshalplan import logging as marshalplan_logging

from .type_info import TypeRef, TypeVisibilityModel

logger = marshalplan_logging.get_logger(__name__)


class TypeCatalog:
    """Type information for one visibility context (one compilation's view).

    A type fully visible in its defining compilation may show erased fields
    when seen from a consumer, so every catalog carries the ``context`` it
    was captured in and verdicts are never shared between contexts.
    """

    def __init__(self, models: Iterable[TypeVisibilityModel] = (), context: str = "default"):
        self.context = context
        self._models: dict[str, TypeVisibilityModel] = {}
        for model in models:
            self.register(model)

    def register(self, model: TypeVisibilityModel) -> None:
        model = _as_definition(model)
        if model.name in self._models:
            raise ValueError(f"Duplicate type definition: {model.name}")
        self._models[model.name] = model

    def lookup(self, type_ref: TypeRef) -> Optional[TypeVisibilityModel]:
        model = self._models.get(type_ref.name)
        if model is None:
            logger.debug("No type information for %s in context %s", type_ref, self.context)
        return model

    def __contains__(self, name: str) -> bool:
        return name in self._models

    def __iter__(self) -> Iterator[TypeVisibilityModel]:
        return iter(self._models.values())

    def __len__(self) -> int:
        return len(self._models)

    def __repr__(self) -> str:
        return f"TypeCatalog(context={self.context!r}, types={len(self._models)})"


def _as_definition(model: TypeVisibilityModel) -> TypeVisibilityModel:
    """Key a generic definition spelled ``Box<T>`` by its bare name ``Box``.

    The arguments must be exactly the declared type parameters, in order.
    """
    ref = model.type_ref
    if not ref.args:
        return model
    declared = [param.name for param in model.type_parameters]
    spelled = [str(arg) for arg in ref.args]
    if spelled != declared:
        raise ValueError(f"Type definition '{ref}' must be spelled with its type parameters "
                         f"{declared}, got {spelled}")
    return replace(model, type_ref=TypeRef(ref.name))

