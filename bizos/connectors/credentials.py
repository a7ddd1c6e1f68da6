"""
Connector credentials as a tagged union keyed by provider type

Each variant carries exactly the fields its client needs. Connector rows
store credentials as JSON; parse_credentials turns that blob into the
matching variant or raises CredentialsError.
"""
from dataclasses import MISSING, dataclass, asdict, fields
from datetime import datetime
from typing import Any, Dict, Optional, Union

from dateutil import parser as date_parser

from bizos.connectors.errors import CredentialsError
from bizos.models.connector import ConnectorType


@dataclass(frozen=True)
class ShopifyCredentials:
    shop_domain: str
    access_token: str
    type: ConnectorType = ConnectorType.SHOPIFY


@dataclass(frozen=True)
class StripeCredentials:
    api_key: str
    type: ConnectorType = ConnectorType.STRIPE


@dataclass(frozen=True)
class MetaAdsCredentials:
    access_token: str
    ad_account_id: str
    token_expires_at: Optional[datetime] = None
    type: ConnectorType = ConnectorType.META_ADS


@dataclass(frozen=True)
class GA4Credentials:
    property_id: str
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    type: ConnectorType = ConnectorType.GA4


@dataclass(frozen=True)
class TiendanubeCredentials:
    store_id: str
    access_token: str
    type: ConnectorType = ConnectorType.TIENDANUBE


Credentials = Union[
    ShopifyCredentials,
    StripeCredentials,
    MetaAdsCredentials,
    GA4Credentials,
    TiendanubeCredentials,
]

CREDENTIAL_TYPES = {
    ConnectorType.SHOPIFY: ShopifyCredentials,
    ConnectorType.STRIPE: StripeCredentials,
    ConnectorType.META_ADS: MetaAdsCredentials,
    ConnectorType.GA4: GA4Credentials,
    ConnectorType.TIENDANUBE: TiendanubeCredentials,
}

# camelCase keys as stored by the web app
_ALIASES = {
    "shopDomain": "shop_domain",
    "accessToken": "access_token",
    "apiKey": "api_key",
    "adAccountId": "ad_account_id",
    "tokenExpiresAt": "token_expires_at",
    "propertyId": "property_id",
    "refreshToken": "refresh_token",
    "expiresAt": "expires_at",
    "storeId": "store_id",
}

_DATETIME_FIELDS = ("token_expires_at", "expires_at")


def parse_credentials(connector_type: Union[ConnectorType, str], raw: Optional[Dict[str, Any]]) -> Credentials:
    """Build the credential variant for a connector type from its stored blob."""
    try:
        connector_type = ConnectorType(connector_type)
    except ValueError:
        raise CredentialsError(f"Unknown connector type: {connector_type}")

    if not raw:
        raise CredentialsError(f"No credentials configured for {connector_type.value} connector")

    cls = CREDENTIAL_TYPES[connector_type]
    allowed = {f.name for f in fields(cls)} - {"type"}
    values = {}
    for key, value in raw.items():
        key = _ALIASES.get(key, key)
        if key in allowed:
            values[key] = value

    required = [f.name for f in fields(cls) if f.name != "type" and f.default is MISSING]
    missing = [name for name in required if not values.get(name)]
    if missing:
        raise CredentialsError(
            f"{connector_type.value} credentials missing required field(s): {', '.join(missing)}"
        )

    for key in _DATETIME_FIELDS:
        if isinstance(values.get(key), str):
            values[key] = date_parser.isoparse(values[key])

    for key in ("store_id", "property_id", "ad_account_id"):
        if key in values:
            values[key] = str(values[key])

    return cls(**values)


def credentials_to_dict(credentials: Credentials) -> Dict[str, Any]:
    """Serialize a variant back into the JSON shape stored on the connector row."""
    data = asdict(credentials)
    data.pop("type", None)
    for key in _DATETIME_FIELDS:
        if isinstance(data.get(key), datetime):
            data[key] = data[key].isoformat()
    return data
