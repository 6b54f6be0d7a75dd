"""Unit tests for template validation and per-channel rendering."""

import json
from unittest.mock import patch

import pytest

from modules.delivery.errors import TemplateError
from modules.delivery.models import Channel
from modules.delivery.templates import (
    COLOR_ERROR,
    COLOR_SUCCESS,
    PUSH_MAX_BODY,
    SMS_MAX_LENGTH,
    Template,
    TemplateRegistry,
    TemplateRenderer,
    segment_sms,
    sms_encoding,
    sms_segment_count,
    theme_color,
    validate_template,
)
from tests.factories.delivery import make_event

pytestmark = pytest.mark.unit


def _renderer(*templates, **kwargs):
    return TemplateRenderer(TemplateRegistry(list(templates)), **kwargs)


@pytest.fixture
def variables():
    return make_event(
        action_url="https://app.example.com/reports/1",
        category="reports",
    ).template_variables()


class TestValidateTemplate:
    """Tests for validate_template()."""

    def test_default_style_template_is_valid(self):
        template = Template(id="t", channel=Channel.EMAIL, subject="{{ title }}", body="{{message}}")

        assert validate_template(template) == []

    def test_unbalanced_braces(self):
        template = Template(id="t", channel=Channel.EMAIL, body="Hello {{ name")

        problems = validate_template(template)

        assert len(problems) == 1
        assert "unbalanced" in problems[0]

    def test_invalid_placeholder_name(self):
        template = Template(id="t", channel=Channel.SMS, body="{{ bad name }}")

        assert "invalid placeholder" in validate_template(template)[0]

    def test_card_strings_are_checked(self):
        template = Template(id="t", channel=Channel.SLACK, card={"blocks": [{"text": "{{ x"}]})

        assert validate_template(template)

    @pytest.mark.parametrize(
        "html_body,fragment",
        [
            ("<p>Hi</p><script>alert(1)</script>", "<script>"),
            ('<a href="javascript:alert(1)">x</a>', "javascript:"),
            ('<img src="x.png" onerror="steal()">', "onerror"),
            ("<iframe src='https://x'></iframe>", "<iframe>"),
        ],
    )
    def test_unsafe_html_is_rejected(self, html_body, fragment):
        template = Template(id="t", channel=Channel.EMAIL, html_body=html_body)

        problems = validate_template(template)

        assert any(fragment in p for p in problems)


class TestSubstitution:
    """Tests for placeholder substitution."""

    def test_missing_variable_renders_empty_with_warning(self):
        renderer = _renderer(
            Template(id="custom", channel=Channel.EMAIL, subject="Hi {{ user.name }}", body="x")
        )

        message = renderer.render("custom", Channel.EMAIL, {})

        assert message.subject == "Hi "
        assert message.warnings == ["unresolved variable: user.name"]

    def test_dotted_paths_and_formatting(self):
        renderer = _renderer(
            Template(
                id="custom",
                channel=Channel.SMS,
                body="{{ report.name }} approved={{ flag }} score={{ score }} n={{ count }}",
            )
        )

        message = renderer.render(
            "custom",
            Channel.SMS,
            {"report": {"name": "Q1"}, "flag": True, "score": 0.5, "count": 3},
        )

        assert message.text == "Q1 approved=true score=0.5 n=3"
        assert message.warnings == []

    def test_product_name_is_available(self):
        renderer = _renderer(
            Template(id="custom", channel=Channel.SMS, body="From {{ product_name }}"),
            product_name="Acme",
        )

        assert renderer.render("custom", Channel.SMS, {}).text == "From Acme"

    def test_invalid_template_raises(self):
        renderer = _renderer(Template(id="broken", channel=Channel.EMAIL, body="{{ oops"))

        with pytest.raises(TemplateError) as exc_info:
            renderer.render("broken", Channel.EMAIL, {})

        assert exc_info.value.template_id == "broken"
        assert exc_info.value.problems

    def test_invalid_variables_raise(self):
        with pytest.raises(TemplateError):
            _renderer().render("x", Channel.EMAIL, {"tags": [1, 2]})

    def test_strict_mode_requires_variables(self):
        template = Template(
            id="strict",
            channel=Channel.EMAIL,
            body="{{ report.name }}",
            required_variables=frozenset({"report.name", "title"}),
        )
        renderer = _renderer(template)

        with pytest.raises(TemplateError, match="report.name"):
            renderer.render("strict", Channel.EMAIL, {"title": "t"}, strict=True)

        lenient = renderer.render("strict", Channel.EMAIL, {"title": "t"})
        assert lenient.text == ""

    def test_validation_is_cached_per_template(self):
        renderer = _renderer(Template(id="custom", channel=Channel.SMS, body="{{ title }}"))

        with patch(
            "modules.delivery.templates.validate_template", return_value=[]
        ) as mock_validate:
            renderer.render("custom", Channel.SMS, {"title": "a"})
            renderer.render("custom", Channel.SMS, {"title": "b"})

        mock_validate.assert_called_once()

    def test_reregistered_template_is_revalidated(self):
        registry = TemplateRegistry(
            [Template(id="t", channel=Channel.EMAIL, subject="s", html_body="<p>ok</p>")]
        )
        renderer = TemplateRenderer(registry)
        assert renderer.render("t", Channel.EMAIL, {}).html == "<p>ok</p>"

        registry.register(
            Template(
                id="t",
                channel=Channel.EMAIL,
                subject="s",
                html_body="<script>alert(1)</script>",
            )
        )

        with pytest.raises(TemplateError, match="<script>"):
            renderer.render("t", Channel.EMAIL, {})


class TestRegistry:
    """Tests for TemplateRegistry lookups."""

    def test_lookup_by_id_then_type_then_default(self):
        by_id = Template(id="approved-v2", channel=Channel.EMAIL, subject="v2")
        by_type = Template(
            id="approved-v1",
            channel=Channel.EMAIL,
            subject="v1",
            notification_type="ReportApproved",
        )
        registry = TemplateRegistry([by_id, by_type])

        assert registry.lookup("approved-v2", Channel.EMAIL) is by_id
        assert registry.lookup("ReportApproved", Channel.EMAIL) is by_type
        assert registry.lookup("ReportApproved", Channel.SMS).id == "default.sms"


class TestEmail:
    """Email rendering."""

    def test_default_email_wraps_escaped_text(self, variables):
        variables["message"] = "Totals <Q1> & more"

        message = _renderer().render("ReportApproved", Channel.EMAIL, variables)

        assert message.subject == "Report approved"
        assert message.text.startswith("Totals <Q1> & more")
        assert "Totals &lt;Q1&gt; &amp; more" in message.html
        assert message.html.startswith("<!DOCTYPE html>")

    def test_html_body_values_are_escaped(self):
        renderer = _renderer(
            Template(
                id="custom",
                channel=Channel.EMAIL,
                subject="{{ title }}",
                html_body="<p>{{ title }}</p>",
            )
        )

        message = renderer.render("custom", Channel.EMAIL, {"title": "<b>x</b>"})

        assert message.html == "<p>&lt;b&gt;x&lt;/b&gt;</p>"
        assert message.subject == "<b>x</b>"


class TestSms:
    """SMS rendering and segmentation."""

    def test_default_sms(self, variables):
        message = _renderer().render("ReportApproved", Channel.SMS, variables)

        assert message.text == "Report approved: Your Q1 report was approved."
        assert message.payload == {"encoding": "GSM-7", "segment_count": 1}
        assert message.segments == [message.text]

    def test_long_sms_is_truncated(self):
        message = _renderer().render(
            "x", Channel.SMS, {"title": "T", "message": "a" * 2000}
        )

        assert len(message.text) == SMS_MAX_LENGTH
        assert message.text.endswith("...")
        assert any("truncated" in w for w in message.warnings)

    def test_gsm_segments(self):
        encoding, parts = segment_sms("a" * 200)

        assert encoding == "GSM-7"
        assert [len(p) for p in parts] == [153, 47]

    def test_extension_characters_cost_two_units(self):
        assert sms_segment_count("{" * 80) == 1
        assert sms_segment_count("{" * 81) == 2

    def test_ucs2_segments(self):
        text = "你" * 71

        assert sms_encoding(text) == "UCS-2"
        encoding, parts = segment_sms(text)
        assert [len(p) for p in parts] == [67, 4]

    def test_accented_gsm_characters_stay_gsm(self):
        assert sms_encoding("été à Zürich") == "GSM-7"

    def test_character_outside_gsm_alphabet_switches_to_ucs2(self):
        # Lowercase c-cedilla is not in the GSM basic set
        assert sms_encoding("ça a été approuvé") == "UCS-2"

    def test_empty_text_has_no_segments(self):
        assert segment_sms("") == ("GSM-7", [])


class TestPushAndInApp:
    """Push and in-app rendering."""

    def test_push_body_is_truncated_and_data_pruned(self, variables):
        variables["message"] = "m" * 500
        variables["action_url"] = ""

        message = _renderer().render("ReportApproved", Channel.PUSH, variables)

        assert len(message.text) == PUSH_MAX_BODY
        assert message.subject == "Report approved"
        assert message.payload["data"] == {
            "type": "ReportApproved",
            "event_id": variables["id"],
        }

    def test_in_app_card(self, variables):
        message = _renderer().render("ReportApproved", Channel.IN_APP, variables)

        assert message.payload == {
            "category": "reports",
            "action_url": "https://app.example.com/reports/1",
        }


class TestChatCards:
    """Slack, Teams and webhook payloads."""

    def test_slack_attachment(self, variables):
        message = _renderer().render("ReportApproved", Channel.SLACK, variables)

        attachment = message.payload["attachments"][0]
        assert message.payload["text"] == "*Report approved*"
        assert attachment["color"] == f"#{COLOR_SUCCESS}"
        assert attachment["title_link"] == "https://app.example.com/reports/1"
        assert {"title": "Category", "value": "reports", "short": True} in attachment["fields"]
        assert attachment["footer"] == "Relay"

    def test_slack_without_action_url_has_no_link(self, variables):
        variables["action_url"] = ""
        variables["type"] = "SecurityAlert"

        message = _renderer().render("SecurityAlert", Channel.SLACK, variables)

        attachment = message.payload["attachments"][0]
        assert "title_link" not in attachment
        assert attachment["color"] == f"#{COLOR_ERROR}"

    def test_teams_message_card(self, variables):
        message = _renderer().render("ReportApproved", Channel.TEAMS, variables)

        card = message.payload
        assert card["@type"] == "MessageCard"
        assert card["themeColor"] == COLOR_SUCCESS
        assert card["potentialAction"][0]["targets"][0]["uri"] == (
            "https://app.example.com/reports/1"
        )

    def test_teams_card_without_action(self, variables):
        variables["action_url"] = ""

        card = _renderer().render("ReportApproved", Channel.TEAMS, variables).payload

        assert "potentialAction" not in card

    def test_webhook_envelope(self, variables):
        message = _renderer().render("ReportApproved", Channel.WEBHOOK, variables)

        payload = message.payload
        assert payload["id"] == variables["id"]
        assert payload["type"] == "ReportApproved"
        assert payload["timestamp"] == variables["created_at"]
        assert payload["data"]["title"] == "Report approved"
        assert payload["data"]["sender_id"] is None
        assert payload["data"]["category"] == "reports"

    def test_card_template_substitutes_leaves_safely(self):
        renderer = _renderer(
            Template(
                id="custom-slack",
                channel=Channel.SLACK,
                card={
                    "text": "{{ title }}",
                    "blocks": [{"type": "section", "text": {"type": "mrkdwn", "text": "*{{ message }}*"}}],
                },
            )
        )

        message = renderer.render(
            "custom-slack", Channel.SLACK, {"title": 'He said "hi"', "message": "a\nb"}
        )

        assert message.payload["text"] == 'He said "hi"'
        assert message.payload["blocks"][0]["text"]["text"] == "*a\nb*"
        assert json.loads(json.dumps(message.payload)) == message.payload


class TestThemeColor:
    """Tests for theme_color()."""

    def test_type_wins_over_priority(self):
        assert theme_color("ReportApproved", "Critical") == COLOR_SUCCESS

    def test_priority_fallback(self):
        assert theme_color("Custom", "Critical") == COLOR_ERROR
