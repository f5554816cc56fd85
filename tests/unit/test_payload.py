"""
Unit tests for payload rendering.
"""

import json

import pytest

from ganje_webhooks.webhooks.payload import render_payload, template_context, try_render


class TestRenderPayload:
    """Test payload rendering."""

    def test_blank_template_is_canonical_json(self, sample_event):
        expected = sample_event.to_json().encode("utf-8")

        assert render_payload(None, sample_event) == expected
        assert render_payload("", sample_event) == expected
        assert render_payload("  \n", sample_event) == expected

    def test_template(self, sample_event):
        template = '{"text": "{{ kind }} {{ group }}:{{ name }}:{{ version }} in {{ repository }}"}'

        payload = render_payload(template, sample_event)

        assert json.loads(payload) == {
            "text": "add com.example:lib:1.0.0 in maven-releases"
        }

    def test_template_event_attributes(self, sample_event):
        payload = render_payload("{{ event.path }}|{{ type }}|{{ timestamp }}", sample_event)

        assert payload == (
            b"com/example/lib/1.0.0/lib-1.0.0.jar|artifact.add|2024-01-01T00:00:00Z"
        )

    def test_syntax_error_falls_back(self, sample_event):
        payload = render_payload("{{ name ", sample_event)
        assert payload == sample_event.to_json().encode("utf-8")

    def test_undefined_variable_falls_back(self, sample_event):
        payload = render_payload("{{ checksum }}", sample_event)
        assert payload == sample_event.to_json().encode("utf-8")

    def test_non_ascii(self, sample_event):
        payload = render_payload("{{ repository }} ✓", sample_event)
        assert payload == "maven-releases ✓".encode("utf-8")


class TestTryRender:
    """Test raw template evaluation."""

    def test_failure_reports_error(self, sample_event):
        result = try_render("{{ checksum }}", sample_event)

        assert not result.ok
        assert result.body == b""
        assert "checksum" in result.error

    def test_success(self, sample_event):
        result = try_render("{{ path }}", sample_event)

        assert result.ok
        assert result.error is None

    def test_context(self, sample_event):
        context = template_context(sample_event)

        assert context["kind"] == "add"
        assert context["type"] == "artifact.add"
        assert context["event"] is sample_event


class TestTemplateIsolation:
    """Templates cannot reach Python internals."""

    @pytest.mark.parametrize(
        "template",
        [
            "{{ cycler.__init__.__globals__.os.getpid() }}",
            "{{ event.__class__.__mro__ }}",
            "{{ ''.__class__.__subclasses__() }}",
        ],
    )
    def test_attribute_escape_falls_back(self, sample_event, template):
        assert render_payload(template, sample_event) == sample_event.to_json().encode("utf-8")

    def test_attribute_escape_is_render_failure(self, sample_event):
        result = try_render("{{ cycler.__init__.__globals__.os.getpid() }}", sample_event)
        assert not result.ok
