"""
GA4 runReport rows -> normalized report entities

Rows carry positional dimension/metric values; parse_row pairs them with the
header names requested. External ids are built from the dimension key so
re-pulling a day overwrites the same rows.
"""
from typing import Any, Dict, List, Sequence

from bizos.transformers.common import entity, parse_date, to_float, to_int

SOURCE = "ga4"

SESSION_DIMENSIONS = ["date", "country", "city", "deviceCategory", "browser", "operatingSystem"]
SESSION_METRICS = [
    "sessions", "engagedSessions", "engagementRate",
    "averageSessionDuration", "bounceRate", "screenPageViews",
]

TRAFFIC_DIMENSIONS = ["date", "sessionSource", "sessionMedium", "sessionCampaignName", "sessionDefaultChannelGroup"]
TRAFFIC_METRICS = ["sessions", "totalUsers", "newUsers", "conversions", "totalRevenue"]

EVENT_DIMENSIONS = ["date", "eventName", "country", "deviceCategory"]
EVENT_METRICS = ["eventCount", "totalUsers", "eventValue"]


def parse_row(row: Dict[str, Any], dimensions: Sequence[str], metrics: Sequence[str]) -> Dict[str, str]:
    values: Dict[str, str] = {}
    dimension_values = row.get("dimensionValues") or []
    metric_values = row.get("metricValues") or []
    for index, name in enumerate(dimensions):
        values[name] = dimension_values[index].get("value", "") if index < len(dimension_values) else ""
    for index, name in enumerate(metrics):
        values[name] = metric_values[index].get("value", "0") if index < len(metric_values) else "0"
    return values


def row_key(property_id: str, values: Dict[str, str], dimensions: Sequence[str]) -> str:
    return ":".join([property_id] + [values.get(name) or "-" for name in dimensions])


def transform_session_row(row: Dict[str, Any], workspace_id: str, property_id: str) -> Dict[str, Any]:
    values = parse_row(row, SESSION_DIMENSIONS, SESSION_METRICS)
    return entity(
        workspace_id,
        SOURCE,
        row_key(property_id, values, SESSION_DIMENSIONS),
        property_id=property_id,
        date=parse_date(values["date"]),
        country=values["country"] or None,
        city=values["city"] or None,
        device_category=values["deviceCategory"] or None,
        browser=values["browser"] or None,
        operating_system=values["operatingSystem"] or None,
        sessions=to_int(values["sessions"]),
        engaged_sessions=to_int(values["engagedSessions"]),
        engagement_rate=to_float(values["engagementRate"]),
        average_session_duration=to_float(values["averageSessionDuration"]),
        bounce_rate=to_float(values["bounceRate"]),
        screen_page_views=to_int(values["screenPageViews"]),
    )


def transform_traffic_row(row: Dict[str, Any], workspace_id: str, property_id: str) -> Dict[str, Any]:
    values = parse_row(row, TRAFFIC_DIMENSIONS, TRAFFIC_METRICS)
    return entity(
        workspace_id,
        SOURCE,
        row_key(property_id, values, TRAFFIC_DIMENSIONS),
        property_id=property_id,
        date=parse_date(values["date"]),
        session_source=values["sessionSource"] or None,
        session_medium=values["sessionMedium"] or None,
        session_campaign=values["sessionCampaignName"] or None,
        channel_group=values["sessionDefaultChannelGroup"] or None,
        sessions=to_int(values["sessions"]),
        total_users=to_int(values["totalUsers"]),
        new_users=to_int(values["newUsers"]),
        conversions=to_int(values["conversions"]),
        total_revenue=to_float(values["totalRevenue"]),
    )


def transform_event_row(row: Dict[str, Any], workspace_id: str, property_id: str) -> Dict[str, Any]:
    values = parse_row(row, EVENT_DIMENSIONS, EVENT_METRICS)
    return entity(
        workspace_id,
        SOURCE,
        row_key(property_id, values, EVENT_DIMENSIONS),
        property_id=property_id,
        date=parse_date(values["date"]),
        event_name=values["eventName"] or "(not set)",
        country=values["country"] or None,
        device_category=values["deviceCategory"] or None,
        event_count=to_int(values["eventCount"]),
        total_users=to_int(values["totalUsers"]),
        event_value=to_float(values["eventValue"]),
    )


def report_request(dimensions: List[str], metrics: List[str], start_date: str, end_date: str) -> Dict[str, Any]:
    return {
        "dateRanges": [{"startDate": start_date, "endDate": end_date}],
        "dimensions": [{"name": name} for name in dimensions],
        "metrics": [{"name": name} for name in metrics],
    }
