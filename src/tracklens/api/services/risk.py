"""IPレコードからリスク評価を算出する純粋関数."""

from __future__ import annotations

from collections.abc import Collection

from tracklens.config import DEFAULT_HIGH_RISK_COUNTRIES
from tracklens.model.models import IPRecord, RiskAssessment, RiskLevel

HIGH_RISK_COUNTRIES: frozenset[str] = frozenset(DEFAULT_HIGH_RISK_COUNTRIES)

VPN_PROXY_POINTS = 15
HOSTING_POINTS = 10
MOBILE_POINTS = 5
HIGH_RISK_COUNTRY_POINTS = 30

HIGH_THRESHOLD = 40
MEDIUM_THRESHOLD = 15

LOCALHOST_IP = "127.0.0.1"
LOCAL_COUNTRY = "Local"


def _level_for(score: int) -> RiskLevel:
    if score >= HIGH_THRESHOLD:
        return RiskLevel.HIGH
    if score >= MEDIUM_THRESHOLD:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def score(
    record: IPRecord | None,
    high_risk_countries: Collection[str] = HIGH_RISK_COUNTRIES,
) -> RiskAssessment:
    """IPRecord をリスク評価に変換する.

    Args:
        record: 解決済みの IP レコード (未解決なら None も可)
        high_risk_countries: +30 点の対象となる国名

    Returns:
        RiskAssessment: level / score / factors

    """
    if record is None or not record.resolved:
        message = (
            f"Lookup failed ({record.error})"
            if record is not None and record.error
            else "Unable to verify IP information"
        )
        return RiskAssessment(level=RiskLevel.LOW, score=0, factors=(message,))

    if record.is_bogon and (
        record.country == LOCAL_COUNTRY or record.ip == LOCALHOST_IP
    ):
        return RiskAssessment(
            level=RiskLevel.LOW,
            score=0,
            factors=(
                "Local network - Localhost/internal access",
                f"IP: {record.ip}",
            ),
        )

    points = 0
    factors: list[str] = []

    if record.is_vpn or record.is_proxy:
        points += VPN_PROXY_POINTS
        factors.append("VPN/Proxy Detected - Connected through VPN or proxy service")

    if record.is_hosting:
        points += HOSTING_POINTS
        factors.append("Data Center/Hosting - Server-based access")

    if record.is_mobile:
        points += MOBILE_POINTS
        factors.append("Mobile Network - Accessed from mobile device/carrier")

    if record.country in high_risk_countries:
        points += HIGH_RISK_COUNTRY_POINTS
        factors.append(f"High-risk country: {record.country}")

    # 情報項目は常に付与
    factors.append(f"Location: {record.country or 'Unknown'}")
    if record.org:
        factors.append(f"Organization: {record.org}")
    else:
        factors.append(f"ISP: {record.isp or 'Unknown'}")

    return RiskAssessment(level=_level_for(points), score=points, factors=tuple(factors))
