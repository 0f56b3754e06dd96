import json
from functools import lru_cache
from pathlib import Path
from typing import Iterable, Sequence

from jinja2 import Environment, FileSystemLoader

from marshalplan.diagnostics import Diagnostic

from .plan_types import MarshallingPlan

_TEMPLATE_DIR = Path(__file__).with_name("templates")


def _yes_no(value: bool) -> str:
    return "yes" if value else "no"


@lru_cache(maxsize=None)
def _get_env() -> Environment:
    env = Environment(
        loader=FileSystemLoader(_TEMPLATE_DIR),
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["yes_no"] = _yes_no
    return env


def render_text_report(plans: Sequence[MarshallingPlan], definition_diagnostics: Iterable[Diagnostic] = ()) -> str:
    template = _get_env().get_template("plan_report.txt.j2")
    plans = list(plans)
    return template.render(
        plans=plans,
        definition_diagnostics=list(definition_diagnostics),
        invalid_count=sum(1 for p in plans if not p.valid),
    )


def render_json_report(plans: Sequence[MarshallingPlan], definition_diagnostics: Iterable[Diagnostic] = ()) -> str:
    payload = {
        "plans": [plan.to_dict() for plan in plans],
        "definition_diagnostics": [d.to_dict() for d in definition_diagnostics],
    }
    return json.dumps(payload, indent=2)
