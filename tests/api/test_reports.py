from tracklens.api.services.reports import (
    NO_TRACKING_DATA,
    build_tracking_summary,
    domain_activity,
    domain_of,
    format_duration,
    ip_analysis,
    screen_time_summary,
)
from tracklens.model.models import (
    AutofillEvent,
    AutofillKind,
    IPRecord,
    MediaEvent,
    MediaKind,
    PageVisit,
    RiskLevel,
    SensitiveFieldRecord,
    TrackingStore,
)

COMMON = {"url": "https://shop.example/login", "domain": "shop.example", "timestamp": 1}


class TestDomainActivity:
    def test_domain_of(self):
        assert domain_of("https://www.example.com/path?q=1") == "example.com"
        assert domain_of("http://localhost:3000/") == "localhost"
        assert domain_of("not a url") == "not a url"

    def test_rolls_up_and_sorts(self):
        activity = {
            "https://www.a.com/1": 1000,
            "https://a.com/2": 2000,
            "https://b.com/": 5000,
        }

        assert domain_activity(activity) == [("b.com", 5000), ("a.com", 3000)]

    def test_format_duration(self):
        assert format_duration(0) == "0 min"
        assert format_duration(29_000) == "0 min"
        assert format_duration(45 * 60_000) == "45 min"
        assert format_duration(90 * 60_000) == "1.5 hr"

    def test_screen_time_summary(self):
        summary = screen_time_summary({"https://a.com": 30_000, "https://b.com": 90_000})

        assert summary.total_ms == 120_000
        assert summary.formatted_total == "2 min"
        assert summary.sites_visited == 2
        assert [d.domain for d in summary.domains] == ["b.com", "a.com"]
        assert summary.domains[0].percentage == 75.0

    def test_empty_screen_time(self):
        summary = screen_time_summary({})

        assert summary.sites_visited == 0
        assert summary.domains == []


class TestIPAnalysis:
    """ドメイン単位の IP リスク集計"""

    def test_groups_by_domain(self):
        vpn = IPRecord(ip="5.5.5.5", country="Iran", isp="X", is_vpn=True)
        visits = [
            PageVisit(url="https://www.a.com/", domain="www.a.com", timestamp=1, ip_data=vpn),
            PageVisit(url="https://a.com/x", domain="a.com", timestamp=2, ip_data=vpn),
            PageVisit(url="", domain="c.com", timestamp=3),
        ]

        entries = ip_analysis(visits)

        assert [(e.domain, e.visit_count) for e in entries] == [("a.com", 2), ("c.com", 1)]
        assert entries[0].risk.score == 45
        assert entries[0].risk.level == RiskLevel.HIGH
        assert entries[1].risk.factors == ("Unable to verify IP information",)


class TestTrackingSummary:
    """LLM 用のトラッキング要約"""

    def test_empty(self):
        assert build_tracking_summary(TrackingStore()) == NO_TRACKING_DATA

    def test_all_sections(self):
        tracking = TrackingStore(
            page_visits=[
                PageVisit(
                    url="http://a.com",
                    domain="a.com",
                    timestamp=1,
                    ip_data=IPRecord(ip="1.2.3.4", country="Germany", is_vpn=True, is_proxy=True),
                ),
                PageVisit(url="http://a.com/2", domain="a.com", timestamp=2),
                PageVisit(url="http://b.com", domain="b.com", timestamp=3),
            ],
            media_access_events=[
                MediaEvent(kind=MediaKind.STARTED, media_types={"camera", "microphone"}, **COMMON),
                MediaEvent(kind=MediaKind.ENDED, media_types={"camera"}, duration=10, **COMMON),
                MediaEvent(kind=MediaKind.DENIED, error="NotAllowedError", **COMMON),
            ],
            autofill_events=[
                AutofillEvent(kind=AutofillKind.DETECTED, field_type="email", **COMMON),
                AutofillEvent(kind=AutofillKind.DETECTED, field_type="email", **COMMON),
                AutofillEvent(kind=AutofillKind.DETECTED, field_type="tel", **COMMON),
                AutofillEvent(kind=AutofillKind.SUBMITTED, autofilled_field_count=2, **COMMON),
            ],
            sensitive_field_events=[
                SensitiveFieldRecord(field_type="password", count=1, **COMMON),
                SensitiveFieldRecord(field_type="password", count=2, **COMMON),
                SensitiveFieldRecord(field_type="payment", count=1, **COMMON),
            ],
        )

        summary = build_tracking_summary(tracking)

        assert "- Total page visits tracked: 3" in summary
        assert "- Unique domains: 2" in summary
        assert "- a.com: IP 1.2.3.4 (Germany) [VPN, Proxy]" in summary
        assert "b.com: IP" not in summary
        assert "- Camera accessed: 2 time(s)" in summary
        assert "- Microphone accessed: 1 time(s)" in summary
        assert "- Access denied: 1 time(s)" in summary
        assert "- Autofilled fields detected: 3" in summary
        assert "- Forms submitted with autofilled data: 1" in summary
        assert "- Total autofilled fields in submissions: 2" in summary
        assert "- Autofilled field types: email (2), tel (1)" in summary
        assert "- password fields: 2 page(s)" in summary
        assert "- payment fields: 1 page(s)" in summary

    def test_sections_are_omitted_when_empty(self):
        tracking = TrackingStore(
            sensitive_field_events=[SensitiveFieldRecord(field_type="email", count=1, **COMMON)]
        )

        summary = build_tracking_summary(tracking)

        assert summary.startswith("## Sensitive Fields Encountered")
        assert "Media Device Access" not in summary
