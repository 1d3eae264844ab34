"""Unit tests for template resolution in node configs."""

import uuid

import pytest

from services.execution.models import WorkflowExecutionContext
from services.parameter_resolver import ParameterResolver, get_nested_value


@pytest.fixture
def resolver():
    return ParameterResolver()


@pytest.fixture
def context():
    return WorkflowExecutionContext(
        execution_id=uuid.uuid4(),
        workspace_id=uuid.uuid4(),
        trigger={"entity_id": "e-1", "amount": 42},
        variables={"region": "eu", "limits": {"daily": 5}},
        step_outputs={
            "fetch": {"status_code": 200, "body": {"items": [{"name": "first"}]}},
            "empty": None,
        },
    )


class TestGetNestedValue:
    """Tests for get_nested_value."""

    def test_dict_and_list_path(self):
        assert get_nested_value({"items": [{"name": "a"}]}, ["items", "0", "name"]) == "a"

    def test_broken_path_is_missing_not_none(self):
        from services.parameter_resolver import _MISSING
        assert get_nested_value({"a": None}, ["a"]) is None
        assert get_nested_value({"a": None}, ["a", "b"]) is _MISSING
        assert get_nested_value({"items": []}, ["items", "3"]) is _MISSING


class TestResolve:
    """Tests for ParameterResolver.resolve."""

    def test_exact_template_keeps_type(self, resolver, context):
        assert resolver.resolve("{{trigger.amount}}", context) == 42
        assert resolver.resolve("{{ steps.fetch.output.body }}", context) == {"items": [{"name": "first"}]}

    def test_output_segment_is_optional(self, resolver, context):
        assert resolver.resolve("{{steps.fetch.status_code}}", context) == 200
        assert resolver.resolve("{{steps.fetch.output.body.items.0.name}}", context) == "first"

    def test_embedded_templates_interpolate(self, resolver, context):
        value = resolver.resolve("/regions/{{variables.region}}/entities/{{trigger.entity_id}}", context)
        assert value == "/regions/eu/entities/e-1"

    def test_embedded_missing_value_drops_string(self, resolver, context):
        assert resolver.resolve("id={{trigger.missing}}", context) is None

    def test_missing_exact_template_is_none(self, resolver, context):
        assert resolver.resolve("{{variables.unknown}}", context) is None

    def test_missing_step_is_none(self, resolver, context):
        assert resolver.resolve("{{steps.never_ran.output}}", context) is None

    def test_nested_structures(self, resolver, context):
        value = resolver.resolve({
            "headers": {"X-Region": "{{variables.region}}"},
            "ids": ["{{trigger.entity_id}}", "static"],
            "limit": 10,
        }, context)
        assert value == {"headers": {"X-Region": "eu"}, "ids": ["e-1", "static"], "limit": 10}

    def test_non_template_braces_untouched(self, resolver, context):
        assert resolver.resolve("{{ not a template", context) == "{{ not a template"

    def test_unknown_root_raises(self, resolver, context):
        with pytest.raises(ValueError, match="Unknown template root"):
            resolver.resolve("{{secrets.token}}", context)

    def test_trigger_without_trigger_raises(self, resolver, context):
        no_trigger = WorkflowExecutionContext(execution_id=uuid.uuid4(), workspace_id=uuid.uuid4())
        with pytest.raises(ValueError, match="none is set"):
            resolver.resolve("{{trigger.entity_id}}", no_trigger)
