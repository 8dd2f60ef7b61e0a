"""Snapshot report rendering (HTML via Jinja2, PDF via WeasyPrint)."""

import logging
import threading
from datetime import datetime
from typing import Dict, List, Mapping, Optional

from jinja2 import Environment, Template, select_autoescape
from pydantic.alias_generators import to_camel

from app.config import settings
from app.core.artifact import SnapshotArtifact
from app.core.comparison import change_direction
from app.providers import ADAPTERS

logger = logging.getLogger(__name__)

SECTION_TITLES = {
    "ga4": "Website Analytics",
    "googleAds": "Google Ads",
    "searchConsole": "Organic Search",
}

METRIC_LABELS = {
    "sessions": "Sessions",
    "users": "Users",
    "newUsers": "New Users",
    "pageviews": "Pageviews",
    "avgSessionDuration": "Avg. Session Duration (s)",
    "bounceRate": "Bounce Rate (%)",
    "activeUsers": "Active Users",
    "engagementRate": "Engagement Rate (%)",
    "userEngagementDuration": "Engagement Time (s)",
    "impressions": "Impressions",
    "clicks": "Clicks",
    "cost": "Cost",
    "conversions": "Conversions",
    "conversionsValue": "Conversion Value",
    "ctr": "CTR (%)",
    "averageCpc": "Avg. CPC",
    "position": "Avg. Position",
}

REPORT_TEMPLATE = """
<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <title>{{ client_name }} - Monthly Report {{ month_label }}</title>
    <style>
        @page { size: A4; margin: 18mm; }
        body { font-family: Arial, sans-serif; color: #333; }
        h1 { margin-bottom: 0; }
        h2 { color: #555; border-bottom: 2px solid #ddd; padding-bottom: 5px; page-break-after: avoid; }
        .meta { color: #777; margin-bottom: 25px; }
        table { width: 100%; border-collapse: collapse; margin: 10px 0 25px; }
        th, td { padding: 6px 8px; border-bottom: 1px solid #eee; text-align: right; }
        th:first-child, td:first-child { text-align: left; }
        .improved { color: #388e3c; }
        .declined { color: #d32f2f; }
        .neutral, .unchanged { color: #757575; }
        .not-connected { color: #999; font-style: italic; }
        .footer { margin-top: 40px; font-size: 0.8em; color: #999; }
    </style>
</head>
<body>
    <h1>{{ client_name }}</h1>
    <div class="meta">
        Monthly performance report for {{ month_label }}
        ({{ period_start }} to {{ period_end }}, compared with {{ previous_start }} to {{ previous_end }})
    </div>

    {% for section in sections %}
    <h2>{{ section.title }}</h2>
    {% if section.connected %}
    <p class="meta">{{ section.account }}</p>
    <table>
        <tr><th>Metric</th><th>{{ month_label }}</th><th>Previous month</th><th>Change</th></tr>
        {% for row in section.rows %}
        <tr>
            <td>{{ row.label }}</td>
            <td>{{ row.current }}</td>
            <td>{{ row.previous }}</td>
            <td class="{{ row.direction }}">{{ row.change }}</td>
        </tr>
        {% endfor %}
    </table>
    {% else %}
    <p class="not-connected">Not connected for this period.</p>
    {% endif %}
    {% endfor %}

    <div class="footer">
        Prepared by {{ agency_name }} &middot; generated {{ generated_at }} &middot; template {{ template_version }}
    </div>
</body>
</html>
"""

_template: Optional[Template] = None
_template_lock = threading.Lock()


def get_template() -> Template:
    """Compile the report template once per process."""
    global _template
    if _template is None:
        with _template_lock:
            if _template is None:
                env = Environment(autoescape=select_autoescape(default_for_string=True))
                _template = env.from_string(REPORT_TEMPLATE)
    return _template


def format_number(value: float) -> str:
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.2f}"


def format_change(change: float) -> str:
    sign = "+" if change > 0 else ""
    return f"{sign}{change:.2f}%"


def build_sections(artifact: SnapshotArtifact, overrides: Optional[Mapping[str, str]] = None) -> List[Dict]:
    """Template context for each known source, present or not."""
    sections = []
    for adapter_class in ADAPTERS.values():
        key = adapter_class.artifact_key
        block = artifact.source_block(key)
        section = {"title": SECTION_TITLES.get(key, key), "connected": block is not None, "rows": []}
        if block is None:
            sections.append(section)
            continue

        identity = block.model_dump(by_alias=True, exclude={"current", "previous", "changes"})
        section["account"] = " / ".join(str(v) for v in identity.values() if v)
        for metric in adapter_class.tracked_metrics:
            name = to_camel(metric)
            change = block.changes.get(name, 0.0)
            section["rows"].append(
                {
                    "label": METRIC_LABELS.get(name, name),
                    "current": format_number(getattr(block.current, metric)),
                    "previous": format_number(getattr(block.previous, metric)),
                    "change": format_change(change),
                    "direction": change_direction(name, change, overrides),
                }
            )
        sections.append(section)
    return sections


def render_html(artifact: SnapshotArtifact, overrides: Optional[Mapping[str, str]] = None) -> str:
    generated_at: datetime = artifact.generated_at
    return get_template().render(
        client_name=artifact.client_name,
        month_label=artifact.snapshot_date.strftime("%B %Y"),
        period_start=artifact.period_start.isoformat(),
        period_end=artifact.period_end.isoformat(),
        previous_start=artifact.previous_period_start.isoformat(),
        previous_end=artifact.previous_period_end.isoformat(),
        sections=build_sections(artifact, overrides),
        agency_name=settings.agency_name,
        generated_at=generated_at.strftime("%Y-%m-%d %H:%M UTC"),
        template_version=artifact.template_version,
    )


def render_pdf(artifact: SnapshotArtifact) -> bytes:
    """Render the artifact to PDF bytes."""
    # WeasyPrint loads native libraries on import; only the PDF path needs them
    from weasyprint import HTML

    html_content = render_html(artifact)
    logger.info(f"Rendering PDF for client {artifact.client_id} {artifact.snapshot_date.isoformat()}")
    return HTML(string=html_content).write_pdf()
