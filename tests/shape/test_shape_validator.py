from dataclasses import replace

import pytest

from marshalplan.data_types import TypeKind
from marshalplan.diagnostics import DiagnosticCode, DiagnosticSeverity
from marshalplan.shape import ShapeValidator
from marshalplan.type_model import (ConstructorInfo, MethodInfo,
                                    TypeVisibilityModel)
from tests.utils import analyzer_for, shadow, t


def _validate(*models, native="WidgetNative", managed="Widget"):
    validator = ShapeValidator(analyzer_for(*models))
    return validator.validate(t(native), t(managed))


def _codes(result, severity=None):
    return [d.code for d in result.diagnostics if severity is None or d.severity is severity]


def test_full_contract_supports_both_directions():
    result = _validate(shadow("WidgetNative", "Widget", free_native=True))
    assert result.valid
    descriptor = result.descriptor
    assert descriptor.supports_managed_to_native
    assert descriptor.supports_native_to_managed
    assert descriptor.release_required
    assert not descriptor.unwraps_value
    assert result.diagnostics == []


def test_only_to_managed_downgrades_managed_to_native():
    result = _validate(shadow("WidgetNative", "Widget", ctor=False))
    assert result.valid
    assert not result.descriptor.supports_managed_to_native
    assert result.descriptor.supports_native_to_managed
    assert _codes(result, DiagnosticSeverity.DOWNGRADE) == [DiagnosticCode.DIRECTION_DOWNGRADED]


def test_only_constructor_downgrades_native_to_managed():
    result = _validate(shadow("WidgetNative", "Widget", to_managed=False))
    assert result.valid
    assert result.descriptor.supports_managed_to_native
    assert not result.descriptor.supports_native_to_managed


def test_no_conversion_method_is_fatal():
    result = _validate(shadow("WidgetNative", "Widget", ctor=False, to_managed=False))
    assert not result.valid
    assert DiagnosticCode.NO_USABLE_CONVERSION_METHOD in _codes(result, DiagnosticSeverity.FATAL_DEFINITION)


def test_constructor_for_another_type_is_not_recognized():
    result = _validate(shadow("WidgetNative", "Gadget", to_managed=False))
    assert not result.valid
    assert DiagnosticCode.NO_USABLE_CONVERSION_METHOD in _codes(result)


def test_to_managed_with_wrong_signature_is_ignored():
    model = shadow("WidgetNative", "Widget", to_managed=False)
    model = TypeVisibilityModel(
        type_ref=model.type_ref, fields=model.fields, constructors=model.constructors,
        methods=(MethodInfo("ToManaged", (t("int"),), t("Widget")),),
    )
    result = _validate(model)
    assert result.valid
    assert result.descriptor.to_managed is None


def test_free_native_with_arguments_is_fatal():
    result = _validate(shadow("WidgetNative", "Widget", free_native=True, free_native_params=("int",)))
    assert not result.valid
    assert DiagnosticCode.FREE_NATIVE_HAS_PARAMETERS in _codes(result)
    assert not result.descriptor.release_required


def test_settable_blittable_value_unwraps():
    model = shadow("WidgetNative", "Widget", value="nint", fields=(("managed", "Widget"),))
    result = _validate(model)
    assert result.valid
    assert result.descriptor.unwraps_value
    assert result.descriptor.value_type == t("nint")
    assert result.descriptor.supports_native_to_managed
    assert t("nint") in result.descriptor.dependencies


def test_unsettable_value_downgrades_native_to_managed():
    result = _validate(shadow("WidgetNative", "Widget", value="nint", value_set=False))
    assert result.valid
    assert result.descriptor.to_managed is not None
    assert not result.descriptor.supports_native_to_managed
    messages = [d.message for d in result.diagnostics if d.severity is DiagnosticSeverity.DOWNGRADE]
    assert any("no setter" in m for m in messages)


def test_by_ref_value_is_fatal():
    result = _validate(shadow("WidgetNative", "Widget", value="nint", value_by_ref=True))
    assert not result.valid
    assert DiagnosticCode.BY_REF_VALUE_PROPERTY in _codes(result)
    assert "GetPinnableReference" in result.diagnostics[0].message


def test_ungettable_value_is_fatal():
    result = _validate(shadow("WidgetNative", "Widget", value="nint", value_get=False))
    assert not result.valid
    assert DiagnosticCode.VALUE_PROPERTY_NOT_GETTABLE in _codes(result)


def test_non_blittable_value_is_fatal():
    result = _validate(shadow("WidgetNative", "Widget", value="bool"))
    assert not result.valid
    assert DiagnosticCode.VALUE_PROPERTY_NOT_BLITTABLE in _codes(result)
    assert not result.descriptor.unwraps_value


def test_non_blittable_shadow_without_value_is_fatal():
    result = _validate(shadow("WidgetNative", "Widget", fields=(("ok", "bool"),)))
    assert not result.valid
    assert DiagnosticCode.NATIVE_TYPE_NOT_BLITTABLE in _codes(result)


def test_reference_type_shadow_is_fatal():
    result = _validate(shadow("WidgetNative", "Widget", kind=TypeKind.REFERENCE_TYPE))
    assert DiagnosticCode.NATIVE_TYPE_NOT_VALUE_TYPE in _codes(result)


def test_unknown_native_type_is_fatal():
    result = _validate()
    assert not result.valid
    assert _codes(result) == [DiagnosticCode.NATIVE_TYPE_UNKNOWN]


def test_required_stack_buffer_with_zero_size_is_rejected():
    result = _validate(shadow("WidgetNative", "Widget", buffer_ctor=True, buffer_size=0, requires_stack=True))
    assert not result.valid
    fatal = [d for d in result.diagnostics if d.is_fatal]
    assert [d.code for d in fatal] == [DiagnosticCode.INCONSISTENT_BUFFER_MEMBERS]
    assert "RequiresStackBuffer=true requires BufferSize > 0" in fatal[0].message


def test_required_stack_buffer_without_size_is_rejected():
    result = _validate(shadow("WidgetNative", "Widget", buffer_ctor=True, requires_stack=True))
    assert not result.valid


def test_buffer_size_without_buffer_constructor_is_rejected():
    result = _validate(shadow("WidgetNative", "Widget", buffer_size=32))
    assert not result.valid
    assert DiagnosticCode.INCONSISTENT_BUFFER_MEMBERS in _codes(result)


def test_buffer_constructor_without_buffer_size_is_rejected():
    result = _validate(shadow("WidgetNative", "Widget", buffer_ctor=True))
    assert not result.valid


def test_consistent_buffer_members():
    result = _validate(shadow("WidgetNative", "Widget", buffer_ctor=True, buffer_size=64))
    assert result.valid
    assert result.descriptor.buffer_size == 64
    assert not result.descriptor.requires_stack_buffer
    assert result.descriptor.buffer_constructor is not None


def test_buffer_only_constructor_warns_about_missing_fallback():
    result = _validate(shadow("WidgetNative", "Widget", ctor=False, buffer_ctor=True, buffer_size=64))
    assert result.valid
    assert result.descriptor.supports_managed_to_native
    assert DiagnosticCode.MISSING_ALLOCATING_FALLBACK in _codes(result, DiagnosticSeverity.ADVISORY)


@pytest.mark.parametrize("requires_stack", [True, False])
def test_requires_stack_buffer_is_recorded(requires_stack):
    result = _validate(shadow("WidgetNative", "Widget", buffer_ctor=True, buffer_size=16,
                              requires_stack=requires_stack))
    assert result.valid
    assert result.descriptor.requires_stack_buffer is requires_stack


def test_pinnable_reference_records_pointee():
    result = _validate(shadow("WidgetNative", "Widget", pinnable="byte"))
    assert result.valid
    assert result.descriptor.pinned_type == t("byte")
    assert result.descriptor.pinned_type_blittable


def test_pinnable_reference_without_by_ref_return_is_not_recognized():
    model = shadow("WidgetNative", "Widget")
    model = TypeVisibilityModel(
        type_ref=model.type_ref, fields=model.fields, constructors=model.constructors,
        methods=model.methods + (MethodInfo("GetPinnableReference", (), t("byte")),),
    )
    result = _validate(model)
    assert result.valid
    assert result.descriptor.pinned_type is None
    assert DiagnosticCode.PINNABLE_REFERENCE_SIGNATURE in _codes(result, DiagnosticSeverity.ADVISORY)


def test_descriptor_to_dict():
    result = _validate(shadow("WidgetNative", "Widget", value="nint", pinnable="nint"))
    data = result.descriptor.to_dict()
    assert data["native_type"] == "WidgetNative"
    assert data["value"] == {"type": "nint", "get": True, "set": True, "blittable": True}
    assert data["pinned_type"] == "nint"


def test_two_parameter_constructor_needs_a_buffer_parameter():
    model = shadow("WidgetNative", "Widget", buffer_size=32)
    model = replace(model, constructors=model.constructors + (ConstructorInfo((t("Widget"), t("int"))),))
    result = _validate(model)
    assert result.descriptor.buffer_constructor is None
    assert not result.valid
    assert DiagnosticCode.INCONSISTENT_BUFFER_MEMBERS in _codes(result, DiagnosticSeverity.FATAL_DEFINITION)


def test_pointer_buffer_constructor_is_recognized():
    model = shadow("WidgetNative", "Widget", buffer_size=32)
    model = replace(model, constructors=model.constructors + (ConstructorInfo((t("Widget"), t("byte*"))),))
    result = _validate(model)
    assert result.valid
    assert result.descriptor.buffer_constructor.parameter_types[1] == t("byte*")
