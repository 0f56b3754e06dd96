import threading

import pytest

from marshalplan.analyzer import (BlittabilityAnalyzer, RecursiveLayoutError,
                                  VerdictCache)
from marshalplan.data_types import TypeKind, VerdictKind
from marshalplan.type_model import TypeParameter
from tests.utils import analyzer_for, catalog, config, field, struct, t  # noqa: F401


@pytest.mark.parametrize("name", ["byte", "sbyte", "short", "ushort", "int", "uint",
                                  "long", "ulong", "nint", "nuint", "float", "double"])
def test_numeric_primitives_are_blittable(name):
    analyzer = analyzer_for()
    assert analyzer.classify(t(name)).kind is VerdictKind.BLITTABLE


@pytest.mark.parametrize("name", ["bool", "char"])
def test_bool_and_char_are_never_blittable(name):
    analyzer = analyzer_for()
    verdict = analyzer.classify(t(name))
    assert verdict.kind is VerdictKind.NOT_BLITTABLE
    assert "never automatically blittable" in verdict.explain()


def test_pointers_are_blittable():
    assert analyzer_for().classify(t("Node*")).is_blittable


def test_composite_of_numeric_fields_is_blittable():
    point = struct("Point", [field("x", "int"), field("y", "double")])
    line = struct("Line", [field("a", "Point"), field("b", "Point")])
    analyzer = analyzer_for(point, line)
    assert analyzer.classify(t("Line")).is_blittable


@pytest.mark.parametrize("bad", ["bool", "char"])
def test_composite_with_bool_or_char_field_is_not_blittable(bad):
    flagged = struct("Flagged", [field("id", "int"), field("flag", bad)])
    verdict = analyzer_for(flagged).classify(t("Flagged"))
    assert verdict.kind is VerdictKind.NOT_BLITTABLE
    assert verdict.reasons[0] == "field 'flag' of 'Flagged' has type '%s'" % bad
    assert not verdict.argument_failure


def test_reference_typed_field_is_not_blittable():
    holder = struct("Holder", [field("name", "string")])
    text = struct("string", kind=TypeKind.REFERENCE_TYPE)
    verdict = analyzer_for(holder, text).classify(t("Holder"))
    assert verdict.kind is VerdictKind.NOT_BLITTABLE
    assert "reference type" in verdict.explain()


def test_erased_field_without_declaration_is_indeterminate():
    foreign = struct("Foreign", [field("<placeholder>", "int", erased=True)])
    verdict = analyzer_for(foreign).classify(t("Foreign"))
    assert verdict.kind is VerdictKind.INDETERMINATE_ERASED_INFO
    assert "insufficient field visibility" in verdict.explain()


def test_erased_field_with_blittable_declaration_is_trusted():
    foreign = struct("Foreign", [field("<placeholder>", "bool", erased=True)], blittable=True)
    assert analyzer_for(foreign).classify(t("Foreign")).is_blittable


def test_indeterminate_field_makes_container_indeterminate():
    foreign = struct("Foreign", [field("<placeholder>", "int", erased=True)])
    outer = struct("Outer", [field("inner", "Foreign")])
    verdict = analyzer_for(foreign, outer).classify(t("Outer"))
    assert verdict.is_indeterminate
    assert len(verdict.reasons) == 2


def test_unknown_type_is_indeterminate():
    assert analyzer_for().classify(t("Missing")).is_indeterminate


def test_enum_classifies_as_underlying_type():
    color = struct("Color", kind=TypeKind.ENUM, underlying="byte")
    assert analyzer_for(color).classify(t("Color")).is_blittable


def test_recursive_value_type_layout_raises():
    node = struct("Node", [field("value", "int"), field("next", "Node")])
    with pytest.raises(RecursiveLayoutError) as excinfo:
        analyzer_for(node).classify(t("Node"))
    assert excinfo.value.chain == ("Node", "Node")


def test_mutual_recursion_raises():
    a = struct("A", [field("b", "B")])
    b = struct("B", [field("a", "A")])
    with pytest.raises(RecursiveLayoutError):
        analyzer_for(a, b).classify(t("A"))


def test_self_pointer_is_not_recursion():
    node = struct("Node", [field("value", "int"), field("next", "Node*")])
    assert analyzer_for(node).classify(t("Node")).is_blittable


def _box():
    return struct("Box", [field("tag", "int"), field("item", "T")], blittable=True, type_parameters=["T"])


def test_generic_definition_treats_parameter_fields_as_pending():
    assert analyzer_for(_box()).classify(t("Box")).is_blittable


def test_generic_definition_with_non_blittable_fixed_field_fails():
    box = struct("Box", [field("flag", "bool"), field("item", "T")], blittable=True, type_parameters=["T"])
    verdict = analyzer_for(box).classify(t("Box"))
    assert verdict.kind is VerdictKind.NOT_BLITTABLE
    assert not verdict.argument_failure


def test_reference_only_type_parameter_field_is_not_blittable():
    box = struct("Box", [field("item", "T")], blittable=True,
                 type_parameters=[TypeParameter("T", can_be_value_type=False)])
    assert not analyzer_for(box).classify(t("Box")).is_blittable


def test_generic_instantiation_with_blittable_argument():
    assert analyzer_for(_box()).classify(t("Box<int>")).is_blittable


def test_generic_instantiation_with_bool_argument_is_argument_failure():
    verdict = analyzer_for(_box()).classify(t("Box<bool>"))
    assert verdict.kind is VerdictKind.NOT_BLITTABLE
    assert verdict.argument_failure


def test_nested_generic_argument_failure_propagates():
    inner = struct("Inner", [field("v", "T")], type_parameters=["T"])
    outer = struct("Outer", [field("n", "int"), field("inner", "Inner<T>")],
                   blittable=True, type_parameters=["T"])
    analyzer = analyzer_for(inner, outer)
    assert analyzer.classify(t("Outer")).is_blittable
    assert analyzer.classify(t("Outer<long>")).is_blittable
    assert analyzer.classify(t("Outer<char>")).argument_failure


def test_erased_generic_instantiation_checks_every_argument():
    foreign = struct("ForeignBox", [field("<placeholder>", "int", erased=True)],
                     blittable=True, type_parameters=["T"])
    analyzer = analyzer_for(foreign)
    assert analyzer.classify(t("ForeignBox<int>")).is_blittable
    assert analyzer.classify(t("ForeignBox<bool>")).argument_failure


def test_arity_mismatch_is_not_blittable():
    assert not analyzer_for(_box()).classify(t("Box<int, int>")).is_blittable


def test_verdicts_are_memoized_per_context():
    point = struct("Point", [field("x", "int")])
    analyzer = analyzer_for(point)
    first = analyzer.classify(t("Point"))
    assert analyzer.cache.get(("test", "Point")) is first
    assert analyzer.classify(t("Point")) is first


def test_cache_is_not_shared_across_visibility_contexts():
    cache = VerdictCache()
    defining = BlittabilityAnalyzer(
        catalog(struct("Point", [field("x", "int")]), context="defining"), cache)
    consuming = BlittabilityAnalyzer(
        catalog(struct("Point", [field("<placeholder>", "int", erased=True)]), context="consumer"), cache)
    assert defining.classify(t("Point")).is_blittable
    assert consuming.classify(t("Point")).is_indeterminate


def test_cache_first_writer_wins():
    cache = VerdictCache()
    analyzer = analyzer_for(struct("Point", [field("x", "int")]))
    winner = analyzer.classify(t("Point"))
    loser = analyzer.classify(t("bool"))
    assert cache.record(("ctx", "Point"), winner) is winner
    assert cache.record(("ctx", "Point"), loser) is winner


def test_concurrent_classification_agrees():
    models = [struct(f"S{i}", [field("a", "int"), field("b", f"S{i + 1}")]) for i in range(20)]
    models.append(struct("S20", [field("a", "long")]))
    analyzer = analyzer_for(*models)
    results = []

    def worker():
        results.append(analyzer.classify(t("S0")))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(results) == 8
    assert all(r is results[0] for r in results)
    assert results[0].is_blittable


def test_configured_primitive_set(config):
    config["analysis"]["blittable_primitives"] = ["int"]
    analyzer = analyzer_for(config=config)
    assert analyzer.classify(t("int")).is_blittable
    assert analyzer.classify(t("long")).is_indeterminate
