import json
from pathlib import Path

import pytest

from marshalplan import ResolutionPass
from marshalplan.plan import render_json_report, render_text_report
from marshalplan.type_model import load_type_graph
from tests.utils import catalog, field, struct

SAMPLE_GRAPH = Path(__file__).resolve().parent.parent / "data" / "sample_graph.json"


@pytest.fixture
def result():
    graph = load_type_graph(str(SAMPLE_GRAPH))
    return ResolutionPass(graph.catalog, max_workers=1).run(graph.use_sites)


def test_text_report(result):
    report = render_text_report(result.plans, result.definition_diagnostics)
    lines = report.splitlines()

    assert "Draw#0: Point [blittable via blittable] OK" in lines
    assert "Toggle#0: Box<bool> [blittable via blittable] INVALID" in lines
    assert "  native type      : nint (unwrapped from TextNative)" in lines
    assert "  native type      : FlagsNative (synthesized)" in lines
    assert "  buffer           : required_stack(64)" in lines
    assert any(line.startswith("  - fatal_use STACK_BUFFER_UNAVAILABLE: ") for line in lines)
    assert lines[-1] == "9 plan(s), 3 invalid"
    assert "definition diagnostics:" not in report


def test_text_report_lists_definition_diagnostics():
    result = ResolutionPass(catalog(struct("Flag", [field("ok", "bool")], blittable=True))).run([])
    report = render_text_report(result.plans, result.definition_diagnostics)
    assert "definition diagnostics:" in report
    assert "DECLARED_BLITTABLE_NOT_BLITTABLE: Flag:" in report
    assert report.splitlines()[-1] == "0 plan(s), 0 invalid"


def test_json_report(result):
    payload = json.loads(render_json_report(result.plans, result.definition_diagnostics))
    assert payload["definition_diagnostics"] == []
    plans = {plan["site"]: plan for plan in payload["plans"]}
    assert plans["Paint#0"]["release_required"] is True
    assert plans["Paint#0"]["native_type"] == "WidgetNative"
    assert plans["Toggle#0"]["valid"] is False
    assert plans["Toggle#0"]["diagnostics"][0]["code"] == "NON_BLITTABLE_TYPE_ARGUMENT"
    assert plans["Toggle#0"]["diagnostics"][0]["severity"] == "fatal_use"
