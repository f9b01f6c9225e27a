"""ダッシュボード/要約向けの集計 (滞在時間・IPリスク・トラッキング要約)."""

from __future__ import annotations

from collections import Counter
from collections.abc import Collection, Mapping
from dataclasses import dataclass, field
from urllib.parse import urlparse

from tracklens.api.services.risk import HIGH_RISK_COUNTRIES, score
from tracklens.model.models import (
    AutofillKind,
    IPRecord,
    MediaKind,
    PageVisit,
    RiskAssessment,
    TrackingStore,
)

MS_PER_MINUTE = 60_000
MINUTES_PER_HOUR = 60

NO_TRACKING_DATA = "No tracking data collected yet."


def domain_of(url: str) -> str:
    """URL からホスト名を取り出す (先頭の www. は除く)."""
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return url
    if not hostname:
        return url
    return hostname.removeprefix("www.")


def format_duration(ms: int) -> str:
    minutes = round(ms / MS_PER_MINUTE)
    if minutes < MINUTES_PER_HOUR:
        return f"{minutes} min"
    return f"{minutes / MINUTES_PER_HOUR:.1f} hr"


def domain_activity(activity: Mapping[str, int]) -> list[tuple[str, int]]:
    """URL 単位の滞在時間をドメイン単位に畳み、降順に並べる."""
    totals: Counter[str] = Counter()
    for url, ms in activity.items():
        totals[domain_of(url)] += ms
    return sorted(totals.items(), key=lambda item: item[1], reverse=True)


@dataclass
class DomainTime:
    domain: str
    time_ms: int
    formatted: str
    percentage: float


@dataclass
class ScreenTimeSummary:
    total_ms: int = 0
    formatted_total: str = "0 min"
    sites_visited: int = 0
    domains: list[DomainTime] = field(default_factory=list)


def screen_time_summary(activity: Mapping[str, int]) -> ScreenTimeSummary:
    ranked = domain_activity(activity)
    total = sum(ms for _, ms in ranked)
    if not ranked:
        return ScreenTimeSummary()
    return ScreenTimeSummary(
        total_ms=total,
        formatted_total=format_duration(total),
        sites_visited=len(ranked),
        domains=[
            DomainTime(
                domain=domain,
                time_ms=ms,
                formatted=format_duration(ms),
                percentage=round(ms / total * 100, 1) if total else 0.0,
            )
            for domain, ms in ranked
        ],
    )


@dataclass
class DomainRiskEntry:
    domain: str
    url: str
    ip_data: IPRecord | None
    visit_count: int
    risk: RiskAssessment


def ip_analysis(
    page_visits: list[PageVisit],
    high_risk_countries: Collection[str] = HIGH_RISK_COUNTRIES,
) -> list[DomainRiskEntry]:
    """訪問をドメインごとにまとめ、最初の訪問の IP レコードで評価する."""
    entries: dict[str, DomainRiskEntry] = {}
    for visit in page_visits:
        domain = domain_of(visit.url or visit.domain)
        entry = entries.get(domain)
        if entry is None:
            entry = DomainRiskEntry(
                domain=domain,
                url=visit.url,
                ip_data=visit.ip_data,
                visit_count=0,
                risk=score(visit.ip_data, high_risk_countries),
            )
            entries[domain] = entry
        entry.visit_count += 1
    return list(entries.values())


# --- LLM に渡すテキスト要約 ---


def _pages_section(visits: list[PageVisit]) -> list[str]:
    lines = [
        "## Pages Visited & IP Information",
        f"- Total page visits tracked: {len(visits)}",
        f"- Unique domains: {len({v.domain for v in visits})}",
    ]

    first_seen: dict[str, IPRecord] = {}
    for visit in visits:
        if visit.ip_data is not None and visit.domain not in first_seen:
            first_seen[visit.domain] = visit.ip_data

    if first_seen:
        lines += ["", "### Domain IP Details:"]
        for domain, ip in first_seen.items():
            markers = [
                name
                for name, flag in (("VPN", ip.is_vpn), ("Proxy", ip.is_proxy))
                if flag
            ]
            suffix = f" [{', '.join(markers)}]" if markers else ""
            lines.append(f"- {domain}: IP {ip.ip} ({ip.country}){suffix}")
    return lines


def build_tracking_summary(tracking: TrackingStore) -> str:
    """TrackingStore から LLM 用のテキスト要約を作る."""
    sections: list[list[str]] = []

    if tracking.page_visits:
        sections.append(_pages_section(tracking.page_visits))

    media = tracking.media_access_events
    if media:
        camera = sum(1 for m in media if "camera" in m.media_types)
        microphone = sum(1 for m in media if "microphone" in m.media_types)
        denied = sum(1 for m in media if m.kind == MediaKind.DENIED)
        lines = [
            "## Media Device Access",
            f"- Camera accessed: {camera} time(s)",
            f"- Microphone accessed: {microphone} time(s)",
        ]
        if denied:
            lines.append(f"- Access denied: {denied} time(s)")
        sections.append(lines)

    autofill = tracking.autofill_events
    if autofill:
        detected = [a for a in autofill if a.kind == AutofillKind.DETECTED]
        submitted = [a for a in autofill if a.kind == AutofillKind.SUBMITTED]
        lines = [
            "## Autofill Usage",
            f"- Autofilled fields detected: {len(detected)}",
        ]
        if submitted:
            total_fields = sum(a.autofilled_field_count or 0 for a in submitted)
            lines += [
                f"- Forms submitted with autofilled data: {len(submitted)}",
                f"- Total autofilled fields in submissions: {total_fields}",
            ]
        field_types = Counter(a.field_type or "text" for a in detected)
        if field_types:
            distribution = ", ".join(f"{t} ({n})" for t, n in field_types.items())
            lines.append(f"- Autofilled field types: {distribution}")
        sections.append(lines)

    sensitive = tracking.sensitive_field_events
    if sensitive:
        lines = ["## Sensitive Fields Encountered"]
        for field_type, count in Counter(s.field_type for s in sensitive).items():
            lines.append(f"- {field_type} fields: {count} page(s)")
        sections.append(lines)

    if not sections:
        return NO_TRACKING_DATA
    return "\n\n".join("\n".join(lines) for lines in sections) + "\n"
