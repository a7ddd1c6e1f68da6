"""
Meta Ads -> normalized ad-platform entities

Budgets arrive as strings in the account currency's minor units; spend and
action values arrive as decimal strings. Both are parsed as Decimal.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, Optional

from bizos.transformers.common import (
    CENTS,
    FOUR_PLACES,
    decimal_or_zero,
    entity,
    from_minor_units,
    parse_date,
    parse_datetime,
    stringify_id,
    to_decimal,
    to_int,
)

SOURCE = "meta_ads"

META_STATUS_MAP = {
    "ACTIVE": "active",
    "PAUSED": "paused",
    "DELETED": "deleted",
    "ARCHIVED": "archived",
    "IN_PROCESS": "draft",
    "WITH_ISSUES": "active",
    "CAMPAIGN_PAUSED": "paused",
    "ADSET_PAUSED": "paused",
    "PENDING_REVIEW": "pending_review",
    "DISAPPROVED": "rejected",
    "PREAPPROVED": "active",
    "PENDING_BILLING_INFO": "draft",
}

META_CAMPAIGN_OBJECTIVES = {
    "OUTCOME_AWARENESS": "awareness",
    "OUTCOME_ENGAGEMENT": "engagement",
    "OUTCOME_LEADS": "leads",
    "OUTCOME_SALES": "sales",
    "OUTCOME_TRAFFIC": "traffic",
    "OUTCOME_APP_PROMOTION": "app_promotion",
    # Legacy objectives
    "BRAND_AWARENESS": "brand_awareness",
    "REACH": "reach",
    "LINK_CLICKS": "traffic",
    "POST_ENGAGEMENT": "engagement",
    "VIDEO_VIEWS": "video_views",
    "LEAD_GENERATION": "leads",
    "MESSAGES": "engagement",
    "CONVERSIONS": "conversions",
    "PRODUCT_CATALOG_SALES": "sales",
    "STORE_VISITS": "store_traffic",
}

META_ACCOUNT_STATUS = {
    1: "active",
    2: "disabled",
    3: "unsettled",
    7: "pending_review",
    8: "pending_closure",
    9: "in_grace_period",
    100: "pending_risk_review",
    101: "pending_settlement",
    201: "any_active",
    202: "any_closed",
}

PURCHASE_ACTIONS = ("omni_purchase", "purchase", "offsite_conversion.fb_pixel_purchase")
ADD_TO_CART_ACTIONS = ("omni_add_to_cart", "add_to_cart")
LEAD_ACTIONS = ("lead", "omni_complete_registration")

DEFAULT_ATTRIBUTION_WINDOW = "7d_click_1d_view"


def map_status(status: Optional[str]) -> str:
    return META_STATUS_MAP.get((status or "").upper(), "active")


def map_account_status(status: Any) -> str:
    """Ad accounts are either active or disabled in the normalized model."""
    return "active" if META_ACCOUNT_STATUS.get(to_int(status, default=-1)) == "active" else "disabled"


def _budget(record: Dict[str, Any]):
    if record.get("daily_budget"):
        return "daily", from_minor_units(to_int(record["daily_budget"]))
    if record.get("lifetime_budget"):
        return "lifetime", from_minor_units(to_int(record["lifetime_budget"]))
    return None, None


def action_count(actions: Optional[Iterable[Dict[str, Any]]], action_types: Iterable[str]) -> int:
    if not actions:
        return 0
    wanted = set(action_types)
    return sum(to_int(a.get("value")) for a in actions if a.get("action_type") in wanted)


def action_value(actions: Optional[Iterable[Dict[str, Any]]], action_types: Iterable[str]) -> Decimal:
    total = Decimal("0")
    if not actions:
        return total.quantize(CENTS)
    wanted = set(action_types)
    for action in actions:
        if action.get("action_type") in wanted:
            total += decimal_or_zero(action.get("value"))
    return total.quantize(CENTS)


def transform_ad_account(account: Dict[str, Any], workspace_id: str) -> Dict[str, Any]:
    external_id = account.get("account_id") or str(account.get("id", "")).replace("act_", "")
    return entity(
        workspace_id,
        SOURCE,
        external_id,
        name=account.get("name") or f"Meta account {external_id}",
        currency=account.get("currency") or "USD",
        timezone=account.get("timezone_name") or "UTC",
        status=map_account_status(account.get("account_status")),
        amount_spent=from_minor_units(to_int(account.get("amount_spent"))) if account.get("amount_spent") else None,
        balance=from_minor_units(to_int(account.get("balance"))) if account.get("balance") else None,
    )


def transform_campaign(campaign: Dict[str, Any], workspace_id: str) -> Dict[str, Any]:
    budget_type, budget = _budget(campaign)
    remaining = campaign.get("budget_remaining")
    return entity(
        workspace_id,
        SOURCE,
        campaign["id"],
        name=campaign.get("name") or "",
        status=map_status(campaign.get("effective_status") or campaign.get("status")),
        objective=META_CAMPAIGN_OBJECTIVES.get(campaign.get("objective") or ""),
        budget_type=budget_type,
        budget=budget,
        budget_remaining=from_minor_units(to_int(remaining)) if remaining else None,
        start_date=parse_date(campaign.get("start_time")),
        end_date=parse_date(campaign.get("stop_time")),
        source_created_at=parse_datetime(campaign.get("created_time")),
    )


def transform_ad_set(ad_set: Dict[str, Any], workspace_id: str) -> Dict[str, Any]:
    budget_type, budget = _budget(ad_set)
    bid = ad_set.get("bid_amount")
    return entity(
        workspace_id,
        SOURCE,
        ad_set["id"],
        name=ad_set.get("name") or "",
        status=map_status(ad_set.get("effective_status") or ad_set.get("status")),
        budget_type=budget_type,
        budget=budget,
        bid_strategy=ad_set.get("bid_strategy"),
        bid_amount=(from_minor_units(to_int(bid)) if bid else None),
        targeting=ad_set.get("targeting"),
        start_date=parse_date(ad_set.get("start_time")),
        end_date=parse_date(ad_set.get("end_time")),
        source_created_at=parse_datetime(ad_set.get("created_time")),
    )


def transform_ad(ad: Dict[str, Any], workspace_id: str) -> Dict[str, Any]:
    creative = ad.get("creative") or {}
    story = creative.get("object_story_spec") or {}
    link = story.get("link_data") or {}
    video = story.get("video_data") or {}
    if video:
        creative_type = "video"
    elif link.get("child_attachments"):
        creative_type = "carousel"
    else:
        creative_type = "image"
    return entity(
        workspace_id,
        SOURCE,
        ad["id"],
        name=ad.get("name") or "",
        status=map_status(ad.get("effective_status") or ad.get("status")),
        creative={
            "type": creative_type,
            "creative_id": stringify_id(creative.get("id")),
            "image_url": creative.get("image_url"),
            "thumbnail_url": creative.get("thumbnail_url"),
            "headline": link.get("name") or video.get("title"),
            "body": link.get("message") or video.get("message"),
            "call_to_action": ((link.get("call_to_action") or video.get("call_to_action") or {}).get("type")),
            "destination_url": link.get("link"),
        } if creative else None,
        source_created_at=parse_datetime(ad.get("created_time")),
    )


def transform_insight(insight: Dict[str, Any], workspace_id: str) -> Dict[str, Any]:
    """
    Daily ad-level insight. external_id is '<ad id>:<date_start>' so a
    re-pulled day overwrites its row.
    """
    spend = decimal_or_zero(insight.get("spend"))
    actions = insight.get("actions")
    values = insight.get("action_values")

    conversions = action_count(actions, PURCHASE_ACTIONS)
    conversion_value = action_value(values, PURCHASE_ACTIONS)
    roas = None
    if spend > 0:
        roas = (conversion_value / spend).quantize(FOUR_PLACES, rounding=ROUND_HALF_UP)
    cpa = None
    if conversions > 0:
        cpa = (spend / conversions).quantize(FOUR_PLACES, rounding=ROUND_HALF_UP)

    return entity(
        workspace_id,
        SOURCE,
        insight_external_id(insight),
        date=parse_date(insight.get("date_start")),
        impressions=to_int(insight.get("impressions")),
        clicks=to_int(insight.get("clicks")),
        spend=spend,
        reach=to_int(insight.get("reach")),
        frequency=to_decimal(insight.get("frequency"), FOUR_PLACES),
        conversions=conversions,
        conversion_value=conversion_value,
        add_to_cart=action_count(actions, ADD_TO_CART_ACTIONS),
        leads=action_count(actions, LEAD_ACTIONS),
        ctr=to_decimal(insight.get("ctr"), FOUR_PLACES),
        cpc=to_decimal(insight.get("cpc"), FOUR_PLACES),
        cpm=to_decimal(insight.get("cpm"), FOUR_PLACES),
        cpa=cpa,
        roas=roas,
        attribution_window=_attribution(insight.get("attribution_setting")),
    )


def insight_external_id(insight: Dict[str, Any]) -> str:
    return f"{insight.get('ad_id')}:{insight.get('date_start')}"


def insight_refs(insight: Dict[str, Any]) -> Dict[str, Optional[str]]:
    return {
        "campaign": stringify_id(insight.get("campaign_id")),
        "ad_set": stringify_id(insight.get("adset_id")),
        "ad": stringify_id(insight.get("ad_id")),
    }


def _attribution(value: Any) -> str:
    if isinstance(value, list):
        value = ",".join(str(v) for v in value)
    return value or DEFAULT_ATTRIBUTION_WINDOW

