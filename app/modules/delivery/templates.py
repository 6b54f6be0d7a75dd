"""Template rendering for every channel.

Templates use ``{{ name }}`` placeholders; dotted names walk nested
variable maps (``{{ report.name }}``). Rendering never fails on a missing
variable: it renders as an empty string and is reported as a warning.
Structurally invalid templates (unbalanced braces, bad placeholder names,
unsafe HTML) raise TemplateError, which aborts only the affected channel.
"""

import html
import json
import math
import re
import threading
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from pydantic import ValidationError

from infrastructure.logging import get_module_logger
from modules.delivery.errors import TemplateError
from modules.delivery.models import Channel, Priority, RenderedMessage, coerce_variables

logger = get_module_logger()

PLACEHOLDER_RE = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")

SMS_MAX_LENGTH = 1600
PUSH_MAX_BODY = 240

DISALLOWED_TAGS = frozenset({"script", "iframe", "object", "embed", "form", "style"})

# Theme colours shared by Teams (hex) and Slack ("#" + hex)
COLOR_SUCCESS = "00FF00"
COLOR_WARNING = "FFAA00"
COLOR_ERROR = "FF0000"
COLOR_ALERT = "FF6600"
COLOR_INFORMATION = "0078D4"

TYPE_COLORS = {
    "ReportApproved": COLOR_SUCCESS,
    "ReportGenerated": COLOR_SUCCESS,
    "ReportRejected": COLOR_ERROR,
    "ReportFailed": COLOR_ERROR,
    "SecurityAlert": COLOR_ERROR,
    "EscalationNotice": COLOR_ALERT,
    "SystemAlert": COLOR_ALERT,
    "DueDateReminder": COLOR_WARNING,
    "SystemMaintenance": COLOR_WARNING,
}

PRIORITY_COLORS = {
    Priority.CRITICAL.label: COLOR_ERROR,
    Priority.HIGH.label: COLOR_WARNING,
}

# GSM 03.38 basic character set and the extension characters costing two septets
GSM7_BASIC = frozenset(
    "@£$¥èéùìòÇ\nØø\rÅåΔ_ΦΓΛΩΠΨΣΘΞÆæßÉ !\"#¤%&'()*+,-./0123456789:;<=>?"
    "¡ABCDEFGHIJKLMNOPQRSTUVWXYZÄÖÑÜ§¿abcdefghijklmnopqrstuvwxyzäöñüà"
)
GSM7_EXTENSION = frozenset("^{}\\[~]|€\f")

SMS_LIMITS = {
    # encoding: (single message, per part of a concatenated message)
    "GSM-7": (160, 153),
    "UCS-2": (70, 67),
}


@dataclass(frozen=True)
class Template:
    """A channel-specific template.

    ``card`` is a JSON-like structure for Slack, Teams and webhook channels;
    substitution walks its string leaves so the output is always valid JSON.
    """

    id: str
    channel: Channel
    subject: Optional[str] = None
    body: str = ""
    html_body: Optional[str] = None
    card: Optional[Dict[str, Any]] = None
    required_variables: FrozenSet[str] = frozenset()
    notification_type: Optional[str] = None


DEFAULT_TEMPLATES: Dict[Channel, Template] = {
    Channel.EMAIL: Template(
        id="default.email",
        channel=Channel.EMAIL,
        subject="{{title}}",
        body="{{message}}\n\n{{action_url}}",
    ),
    Channel.SMS: Template(id="default.sms", channel=Channel.SMS, body="{{title}}: {{message}}"),
    Channel.PUSH: Template(
        id="default.push",
        channel=Channel.PUSH,
        subject="{{title}}",
        body="{{message}}",
        card={"type": "{{type}}", "event_id": "{{id}}", "action_url": "{{action_url}}"},
    ),
    Channel.IN_APP: Template(
        id="default.in_app",
        channel=Channel.IN_APP,
        subject="{{title}}",
        body="{{message}}",
        card={"category": "{{category}}", "action_url": "{{action_url}}"},
    ),
    Channel.SLACK: Template(
        id="default.slack", channel=Channel.SLACK, subject="{{title}}", body="{{message}}"
    ),
    Channel.TEAMS: Template(
        id="default.teams", channel=Channel.TEAMS, subject="{{title}}", body="{{message}}"
    ),
    Channel.WEBHOOK: Template(
        id="default.webhook", channel=Channel.WEBHOOK, subject="{{title}}", body="{{message}}"
    ),
}


class _HtmlSafetyChecker(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.problems: List[str] = []

    def handle_starttag(self, tag: str, attrs: List[Tuple[str, Optional[str]]]) -> None:
        if tag in DISALLOWED_TAGS:
            self.problems.append(f"<{tag}> is not allowed")
        for name, value in attrs:
            if name.startswith("on"):
                self.problems.append(f"event handler attribute {name} is not allowed")
            if value and value.strip().lower().startswith("javascript:"):
                self.problems.append(f"javascript: URL in {name} is not allowed")

    handle_startendtag = handle_starttag


def _iter_strings(value: Any):
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _iter_strings(item)
    elif isinstance(value, list):
        for item in value:
            yield from _iter_strings(item)


def validate_template(template: Template) -> List[str]:
    """Return the structural problems of a template (empty when valid)."""
    problems: List[str] = []
    sources = [template.subject or "", template.body, template.html_body or ""]
    sources.extend(_iter_strings(template.card or {}))

    for source in sources:
        remainder = PLACEHOLDER_RE.sub("", source)
        if "{{" in remainder or "}}" in remainder:
            problems.append(f"unbalanced placeholder in {source[:40]!r}")
        for match in PLACEHOLDER_RE.finditer(source):
            name = match.group(1).strip()
            if "{" in name or not NAME_RE.match(name):
                problems.append(f"invalid placeholder {{{{{match.group(1)}}}}}")

    if template.html_body:
        checker = _HtmlSafetyChecker()
        checker.feed(template.html_body)
        checker.close()
        problems.extend(checker.problems)

    return problems


def _lookup(variables: Dict[str, Any], name: str) -> Tuple[bool, Any]:
    current: Any = variables
    for part in name.split("."):
        if not isinstance(current, dict) or part not in current:
            return False, None
        current = current[part]
    return True, current


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return format(value, "g")
    if isinstance(value, dict):
        return json.dumps(value, sort_keys=True)
    return str(value)


def sms_encoding(text: str) -> str:
    """GSM-7 when every character is in the GSM alphabet, else UCS-2."""
    if all(ch in GSM7_BASIC or ch in GSM7_EXTENSION for ch in text):
        return "GSM-7"
    return "UCS-2"


def _sms_units(ch: str, encoding: str) -> int:
    if encoding == "GSM-7":
        return 2 if ch in GSM7_EXTENSION else 1
    return 2 if ord(ch) > 0xFFFF else 1


def segment_sms(text: str) -> Tuple[str, List[str]]:
    """Split text into the parts a carrier will deliver.

    Returns:
        (encoding, parts). A message fitting the single-message limit is
        one part; longer messages are split at the concatenated-part limit
        without breaking an escaped GSM character or surrogate pair.
    """
    encoding = sms_encoding(text)
    single, per_part = SMS_LIMITS[encoding]
    total = sum(_sms_units(ch, encoding) for ch in text)
    if total <= single:
        return encoding, [text] if text else []

    parts: List[str] = []
    current: List[str] = []
    used = 0
    for ch in text:
        units = _sms_units(ch, encoding)
        if used + units > per_part:
            parts.append("".join(current))
            current, used = [], 0
        current.append(ch)
        used += units
    if current:
        parts.append("".join(current))
    return encoding, parts


def sms_segment_count(text: str) -> int:
    encoding = sms_encoding(text)
    single, per_part = SMS_LIMITS[encoding]
    total = sum(_sms_units(ch, encoding) for ch in text)
    return 1 if total <= single else math.ceil(total / per_part)


def theme_color(notification_type: str, priority_label: str) -> str:
    return TYPE_COLORS.get(
        notification_type, PRIORITY_COLORS.get(priority_label, COLOR_INFORMATION)
    )


class TemplateRegistry:
    """Registered templates, looked up by id or by notification type.

    Templates are administered elsewhere; the delivery subsystem only
    reads them. ``register`` exists to load them.
    """

    def __init__(self, templates: Optional[List[Template]] = None):
        self._by_id: Dict[Tuple[str, Channel], Template] = {}
        self._by_type: Dict[Tuple[str, Channel], Template] = {}
        self._lock = threading.Lock()
        for template in templates or []:
            self.register(template)

    def register(self, template: Template) -> None:
        with self._lock:
            self._by_id[(template.id, template.channel)] = template
            if template.notification_type:
                self._by_type[(template.notification_type, template.channel)] = template

    def lookup(self, template_ref: str, channel: Channel) -> Template:
        """Resolve a template id, then a notification type, then the channel default."""
        with self._lock:
            template = self._by_id.get((template_ref, channel)) or self._by_type.get(
                (template_ref, channel)
            )
        return template or DEFAULT_TEMPLATES[channel]


class TemplateRenderer:
    """Merge templates with variables into channel-shaped content."""

    def __init__(
        self,
        registry: Optional[TemplateRegistry] = None,
        product_name: str = "Relay",
        strict: bool = False,
    ):
        self.registry = registry or TemplateRegistry()
        self.product_name = product_name
        self.strict = strict
        self._validated: Dict[Tuple[Any, ...], List[str]] = {}
        self._lock = threading.Lock()

    def _problems(self, template: Template) -> List[str]:
        # Keyed on content so a template re-registered under the same id is revalidated
        key = (
            template.id,
            template.channel,
            template.subject,
            template.body,
            template.html_body,
            json.dumps(template.card, sort_keys=True, default=str),
        )
        with self._lock:
            cached = self._validated.get(key)
        if cached is None:
            cached = validate_template(template)
            with self._lock:
                self._validated[key] = cached
        return cached

    def render(
        self,
        template_ref: str,
        channel: Channel,
        variables: Dict[str, Any],
        strict: Optional[bool] = None,
    ) -> RenderedMessage:
        """Render ``template_ref`` for ``channel``.

        Raises:
            TemplateError: The template is structurally invalid, the
                variables are not TemplateValues, or (strict mode) a
                required variable is missing.
        """
        template = self.registry.lookup(template_ref, channel)
        problems = self._problems(template)
        if problems:
            logger.error(
                "template_validation_failed",
                template_id=template.id,
                channel=channel.value,
                problems=problems,
            )
            raise TemplateError(
                f"Template {template.id} is invalid: {'; '.join(problems)}",
                template_id=template.id,
                problems=problems,
            )

        try:
            values = coerce_variables(variables)
        except ValidationError as e:
            raise TemplateError(
                f"Template variables are invalid: {e.error_count()} error(s)",
                template_id=template.id,
            ) from e

        values.setdefault("product_name", self.product_name)
        color = theme_color(str(values.get("type", "")), str(values.get("priority", "")))
        values.setdefault("theme_color", color)
        values.setdefault("slack_color", f"#{color}")

        is_strict = self.strict if strict is None else strict
        if is_strict:
            missing = sorted(
                name for name in template.required_variables if not _lookup(values, name)[0]
            )
            if missing:
                raise TemplateError(
                    f"Missing required variables: {', '.join(missing)}",
                    template_id=template.id,
                    problems=missing,
                )

        warnings: List[str] = []
        renderer = _Substitution(values, warnings)
        message = self._shape(template, channel, renderer, values)
        message.warnings.extend(dict.fromkeys(warnings))
        if message.warnings:
            logger.warning(
                "template_rendered_with_warnings",
                template_id=template.id,
                channel=channel.value,
                warnings=message.warnings,
            )
        return message

    def _shape(
        self,
        template: Template,
        channel: Channel,
        sub: "_Substitution",
        values: Dict[str, Any],
    ) -> RenderedMessage:
        subject = sub.text(template.subject) if template.subject else None
        text = sub.text(template.body)

        if channel == Channel.EMAIL:
            if template.html_body:
                html_body = sub.text(template.html_body, escape=True)
            else:
                html_body = _wrap_html(subject or "", text)
            return RenderedMessage(
                channel=channel, subject=subject or "", text=text, html=html_body
            )

        if channel == Channel.SMS:
            rendered = RenderedMessage(channel=channel, text=text)
            if len(text) > SMS_MAX_LENGTH:
                rendered.text = text[: SMS_MAX_LENGTH - 3] + "..."
                rendered.warnings.append(
                    f"SMS truncated from {len(text)} to {SMS_MAX_LENGTH} characters"
                )
            encoding, parts = segment_sms(rendered.text)
            rendered.segments = parts
            rendered.payload = {"encoding": encoding, "segment_count": len(parts)}
            return rendered

        if channel == Channel.PUSH:
            body = text if len(text) <= PUSH_MAX_BODY else text[: PUSH_MAX_BODY - 3] + "..."
            data = {
                k: v for k, v in sub.card(template.card or {}).items() if isinstance(v, str) and v
            }
            return RenderedMessage(
                channel=channel, subject=subject or "", text=body, payload={"data": data}
            )

        if channel == Channel.IN_APP:
            return RenderedMessage(
                channel=channel,
                subject=subject or "",
                text=text,
                payload=_prune_empty(sub.card(template.card or {})),
            )

        if channel == Channel.WEBHOOK:
            if template.card is not None:
                data = _prune_empty(sub.card(template.card))
            else:
                data = _webhook_data(subject or "", text, values)
            payload = {
                "id": values.get("id"),
                "type": values.get("type"),
                "timestamp": values.get("created_at"),
                "data": data,
            }
        elif template.card is not None:
            payload = _prune_empty(sub.card(template.card))
        elif channel == Channel.SLACK:
            payload = _slack_payload(subject or "", text, values)
        else:
            payload = _teams_card(subject or "", text, values)
        return RenderedMessage(channel=channel, subject=subject, text=text, payload=payload)


class _Substitution:
    def __init__(self, values: Dict[str, Any], warnings: List[str]):
        self.values = values
        self.warnings = warnings

    def text(self, source: str, escape: bool = False) -> str:
        def replace(match: "re.Match[str]") -> str:
            name = match.group(1).strip()
            found, value = _lookup(self.values, name)
            if not found:
                self.warnings.append(f"unresolved variable: {name}")
                return ""
            rendered = _format_value(value)
            return html.escape(rendered) if escape else rendered

        return PLACEHOLDER_RE.sub(replace, source)

    def card(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.text(value)
        if isinstance(value, dict):
            return {k: self.card(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self.card(v) for v in value]
        return value


def _prune_empty(value: Any) -> Any:
    """Drop empty-string leaves so optional card fields are simply absent."""
    if isinstance(value, dict):
        return {k: _prune_empty(v) for k, v in value.items() if v != ""}
    if isinstance(value, list):
        return [_prune_empty(v) for v in value if v != ""]
    return value


def _wrap_html(subject: str, text: str) -> str:
    paragraphs = "".join(
        f"<p>{html.escape(p).replace(chr(10), '<br>')}</p>"
        for p in text.split("\n\n")
        if p.strip()
    )
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>{html.escape(subject)}</title></head><body>{paragraphs}</body></html>"
    )


def _slack_payload(title: str, text: str, values: Dict[str, Any]) -> Dict[str, Any]:
    fields = [
        {"title": "Priority", "value": values.get("priority", ""), "short": True},
        {"title": "Type", "value": values.get("type", ""), "short": True},
    ]
    if values.get("category"):
        fields.append({"title": "Category", "value": values["category"], "short": True})
    attachment: Dict[str, Any] = {
        "color": values["slack_color"],
        "title": title,
        "text": text,
        "fields": fields,
        "footer": values["product_name"],
    }
    if values.get("action_url"):
        attachment["title_link"] = values["action_url"]
    return {"text": f"*{title}*", "attachments": [attachment]}


def _teams_card(title: str, text: str, values: Dict[str, Any]) -> Dict[str, Any]:
    facts = [
        {"name": "Priority", "value": values.get("priority", "")},
        {"name": "Type", "value": values.get("type", "")},
    ]
    if values.get("category"):
        facts.append({"name": "Category", "value": values["category"]})
    if values.get("related_entity_id"):
        facts.append(
            {
                "name": values.get("related_entity_type") or "Related",
                "value": values["related_entity_id"],
            }
        )
    card: Dict[str, Any] = {
        "@type": "MessageCard",
        "@context": "https://schema.org/extensions",
        "summary": title,
        "themeColor": values["theme_color"],
        "title": title,
        "text": text,
        "sections": [{"facts": facts}],
    }
    if values.get("action_url"):
        card["potentialAction"] = [
            {
                "@type": "OpenUri",
                "name": "View Details",
                "targets": [{"os": "default", "uri": values["action_url"]}],
            }
        ]
    return card


def _webhook_data(title: str, text: str, values: Dict[str, Any]) -> Dict[str, Any]:
    def optional(name: str) -> Optional[str]:
        value = values.get(name)
        return str(value) if value not in (None, "") else None

    return {
        "title": title,
        "message": text,
        "priority": values.get("priority"),
        "category": optional("category"),
        "recipient_id": optional("recipient_id"),
        "sender_id": optional("sender_id"),
        "related_entity_id": optional("related_entity_id"),
        "related_entity_type": optional("related_entity_type"),
        "action_url": optional("action_url"),
        "metadata": values.get("metadata", {}),
    }
