# audit_chat/services/context_formatter.py
"""
Turn a stored report artifact into a plain-text briefing for the assistant.

The briefing is injected into a thread as a single user-role message, so it is
prose under labelled sections rather than JSON. Formatting never raises: a
report we cannot read is dumped as canonical JSON instead.
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional, Tuple
import json
import logging

from audit_chat.config import settings
from audit_chat.schemas.report import MarketingReport, WebsiteReport, WebsiteScore, StructuredReport

logger = logging.getLogger(__name__)


# (field, keywords) - first match wins, checked in this order against the
# lower-cased section title with underscores read as spaces
MARKETING_SECTION_KEYWORDS: List[Tuple[str, Tuple[str, ...]]] = [
    ("executive_summary", ("executive summary",)),
    ("health_score", ("health score", "section breakdown", "category breakdown")),
    ("detailed_analysis", ("detailed section analysis", "detailed analysis")),
    ("red_flags", ("red flags", "risk areas")),
    ("opportunities", ("opportunity areas", "opportunities")),
    ("action_plan", ("action plan", "30/90/365")),
    ("social_performance", ("social channel", "social media performance", "social performance")),
    ("tool_recommendations", ("tool recommendations", "tools recommendations")),
    ("benchmarks", ("benchmark",)),
    ("next_steps", ("call to action", "next steps")),
    ("follow_up", ("follow up", "follow-up")),
]

MARKETING_SECTION_LABELS: Dict[str, str] = {
    "executive_summary": "EXECUTIVE SUMMARY",
    "health_score": "MARKETING HEALTH SCORE",
    "detailed_analysis": "DETAILED SECTION ANALYSIS",
    "red_flags": "RED FLAGS",
    "opportunities": "TOP OPPORTUNITIES",
    "action_plan": "ACTION PLAN",
    "social_performance": "SOCIAL MEDIA PERFORMANCE",
    "tool_recommendations": "TOOL RECOMMENDATIONS",
    "benchmarks": "BENCHMARK COMPARISON",
    "next_steps": "NEXT STEPS",
}

FOLLOW_UP_LABEL = "SUGGESTED FOLLOW-UP TOPICS"
TRUNCATION_NOTE = "[Report context truncated]"


# ---------------------- parsing (raw JSON -> struct) ----------------------

def _norm_key(key: Any) -> str:
    return str(key).strip().lower().replace("_", " ")


def _as_str_list(value: Any) -> Optional[List[str]]:
    if value is None:
        return None
    if isinstance(value, str):
        return [value] if value.strip() else None
    if isinstance(value, (list, tuple)):
        out = [str(v).strip() for v in value if v is not None and str(v).strip()]
        return out or None
    return None


def parse_marketing(raw: Dict[str, Any]) -> MarketingReport:
    fields: Dict[str, Any] = {}
    extra: Dict[str, Any] = {}
    for key, value in raw.items():
        low = _norm_key(key)
        for field, keywords in MARKETING_SECTION_KEYWORDS:
            if any(k in low for k in keywords):
                if field not in fields:
                    fields[field] = value
                break
        else:
            extra[str(key)] = value

    follow_up = _as_str_list(fields.pop("follow_up", None))
    return MarketingReport(**fields, follow_up=follow_up, extra=extra)


def parse_website(raw: Dict[str, Any]) -> WebsiteReport:
    # Reports are stored either wrapped ({"website_analysis": {...}}) or bare
    inner = raw.get("website_analysis")
    if isinstance(inner, dict):
        raw = inner

    score = raw.get("score")
    if isinstance(score, dict):
        score_obj: Optional[WebsiteScore] = WebsiteScore(
            value=score.get("value"),
            status=score.get("status") if isinstance(score.get("status"), str) else None,
        )
    elif score is not None:
        score_obj = WebsiteScore(value=score)
    else:
        score_obj = None

    known = {"score", "analysis", "recommendations", "priority_roadmap", "follow_up"}
    extra = {str(k): v for k, v in raw.items() if k not in known}
    return WebsiteReport(
        score=score_obj,
        analysis=raw.get("analysis"),
        recommendations=raw.get("recommendations"),
        priority_roadmap=raw.get("priority_roadmap"),
        follow_up=_as_str_list(raw.get("follow_up")),
        extra=extra,
    )


def parse_report(raw: Dict[str, Any], kind: str) -> StructuredReport:
    if kind == "website":
        return parse_website(raw)
    return parse_marketing(raw)


# ---------------------- rendering (struct -> prose) ----------------------

def _humanize(key: Any) -> str:
    s = str(key).replace("_", " ").strip()
    return s[:1].upper() + s[1:] if s else s


def _render(value: Any, depth: int = 0) -> List[str]:
    """Render nested JSON as indented lines; scalars inline, lists as bullets."""
    pad = "  " * depth
    if value is None:
        return []
    if isinstance(value, str):
        return [pad + line.rstrip() for line in value.strip().splitlines() if line.strip()]
    if isinstance(value, (bool, int, float)):
        return [pad + str(value)]
    if isinstance(value, dict):
        lines: List[str] = []
        for k, v in value.items():
            if v is None or v == "" or v == [] or v == {}:
                continue
            if isinstance(v, (str, bool, int, float)) and "\n" not in str(v):
                lines.append(f"{pad}{_humanize(k)}: {v}")
            else:
                lines.append(f"{pad}{_humanize(k)}:")
                lines.extend(_render(v, depth + 1))
        return lines
    if isinstance(value, (list, tuple)):
        lines = []
        for item in value:
            sub = _render(item, depth + 1)
            if not sub:
                continue
            lines.append(f"{pad}- {sub[0].strip()}")
            lines.extend(sub[1:])
        return lines
    return [pad + str(value)]


def _section(label: str, value: Any) -> Optional[str]:
    body = _render(value)
    if not body:
        return None
    return f"{label}:\n" + "\n".join(body)


def _render_marketing(report: MarketingReport) -> List[str]:
    sections: List[Optional[str]] = []
    for field, label in MARKETING_SECTION_LABELS.items():
        sections.append(_section(label, getattr(report, field)))
    for key, value in report.extra.items():
        sections.append(_section(_humanize(key).upper(), value))
    if report.follow_up:
        sections.append(_section(FOLLOW_UP_LABEL, report.follow_up))
    return [s for s in sections if s]


def _render_website(report: WebsiteReport) -> List[str]:
    sections: List[Optional[str]] = []
    if report.score is not None and report.score.value is not None:
        line = f"WEBSITE SCORE: {report.score.value}"
        if report.score.status:
            line += f" ({report.score.status})"
        sections.append(line)
    sections.append(_section("ANALYSIS", report.analysis))
    sections.append(_section("RECOMMENDATIONS", report.recommendations))
    sections.append(_section("PRIORITY ROADMAP", report.priority_roadmap))
    for key, value in report.extra.items():
        sections.append(_section(_humanize(key).upper(), value))
    if report.follow_up:
        sections.append(_section(FOLLOW_UP_LABEL, report.follow_up))
    return [s for s in sections if s]


class ContextFormatter:
    """
    format(report, kind) -> briefing text. Pure and deterministic.

    - str input is returned verbatim
    - absent sections are omitted
    - unexpected shapes fall back to a sorted JSON dump
    - output is capped at max_chars and is never empty
    """

    def __init__(self, max_chars: Optional[int] = None):
        self.max_chars = max_chars or settings.REPORT_CONTEXT_MAX_CHARS

    def format(self, report: Any, kind: str) -> str:
        if isinstance(report, str) and report.strip():
            return report
        if report is None or (isinstance(report, str) and not report.strip()):
            return self._empty(kind)

        try:
            if isinstance(report, (MarketingReport, WebsiteReport)):
                structured = report
            elif isinstance(report, dict):
                structured = parse_report(report, kind)
            else:
                return self._bound(self._raw_dump(report, kind))

            if isinstance(structured, WebsiteReport):
                sections = _render_website(structured)
            else:
                sections = _render_marketing(structured)
            if not sections:
                return self._bound(self._raw_dump(report, kind))

            header = f"{self._title(kind)} REPORT BRIEFING"
            return self._bound(header + "\n\n" + "\n\n".join(sections))
        except Exception as e:
            logger.warning(f"Report formatting failed for kind={kind}, using raw dump: {e}")
            return self._bound(self._raw_dump(report, kind))

    # ---------- helpers ----------

    @staticmethod
    def _title(kind: str) -> str:
        return "WEBSITE ANALYSIS" if kind == "website" else "MARKETING AUDIT"

    def _empty(self, kind: str) -> str:
        return f"No {self._title(kind).lower()} report data is available for this conversation."

    def _raw_dump(self, report: Any, kind: str) -> str:
        if isinstance(report, (MarketingReport, WebsiteReport)):
            report = report.model_dump(exclude_none=True)
        try:
            body = json.dumps(report, indent=2, sort_keys=True, default=str)
        except Exception:
            body = repr(report)
        if not body or not body.strip() or body.strip() in {"{}", "[]", "null"}:
            return self._empty(kind)
        return f"{self._title(kind)} REPORT DATA (raw):\n{body}"

    def _bound(self, text: str) -> str:
        if len(text) <= self.max_chars:
            return text
        budget = max(self.max_chars - len(TRUNCATION_NOTE) - 1, 0)
        head = text[:budget]
        cut = head.rfind("\n")
        if cut > budget // 2:
            head = head[:cut]
        return head.rstrip() + "\n" + TRUNCATION_NOTE
