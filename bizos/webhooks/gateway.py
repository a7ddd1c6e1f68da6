"""
Webhook Gateway

Verifies an inbound delivery, routes it to the owning connector, records it
in webhook_events for dedup and observability, and applies it through the
connector's webhook handlers.

Response codes: 400 unsupported provider or unparseable body, 401 bad
signature (nothing written), 500 processing failure below the attempt
ceiling so the provider retries, 2xx otherwise.
"""
import hashlib
import json
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bizos.config import get_settings
from bizos.connectors.registry import ConnectorRegistry, build_default_registry
from bizos.models.base import SessionLocal
from bizos.models.connector import Connector, ConnectorType, WebhookEvent, WebhookEventStatus
from bizos.utils.logger import log
from bizos.webhooks import verifiers

settings = get_settings()

SIGNATURE_HEADER = "x-webhook-signature"
STRIPE_SIGNATURE_HEADER = "stripe-signature"
SHOPIFY_HMAC_HEADER = "x-shopify-hmac-sha256"
TIENDANUBE_HMAC_HEADER = "x-linkedstore-hmac-sha256"


class WebhookError(Exception):
    status_code = 400


class UnsupportedProviderError(WebhookError):
    status_code = 400


class WebhookVerificationError(WebhookError):
    status_code = 401


class MalformedWebhookError(WebhookError):
    status_code = 400


@dataclass
class WebhookResponse:
    verified: bool
    processed: bool
    status_code: int
    error: Optional[str] = None
    event_id: Optional[str] = None
    action: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verified": self.verified,
            "processed": self.processed,
            "error": self.error,
            "event_id": self.event_id,
            "action": self.action,
        }


@dataclass
class WebhookEnvelope:
    """Provider-independent view of one delivery."""
    event_id: str
    event_type: str
    payload: Dict[str, Any]
    routing_key: Optional[str] = None


def _body_digest(raw_body: bytes) -> str:
    return hashlib.sha256(raw_body).hexdigest()


def parse_envelope(provider: str, raw_body: bytes, headers: Mapping[str, str]) -> WebhookEnvelope:
    """Extract event id, type, payload and routing key. Raises MalformedWebhookError."""
    try:
        body = json.loads(raw_body.decode("utf-8") or "{}")
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedWebhookError(f"Invalid JSON body: {e}")
    if not isinstance(body, dict):
        raise MalformedWebhookError("Webhook body must be a JSON object")

    if provider == ConnectorType.STRIPE.value:
        event_type = body.get("type")
        data = (body.get("data") or {}).get("object")
        if not body.get("id") or not event_type or not isinstance(data, dict):
            raise MalformedWebhookError("Stripe event missing id, type or data.object")
        return WebhookEnvelope(body["id"], event_type, data, body.get("account"))

    if provider == ConnectorType.SHOPIFY.value:
        topic = headers.get("x-shopify-topic")
        if not topic:
            raise MalformedWebhookError("Missing X-Shopify-Topic header")
        event_id = headers.get("x-shopify-webhook-id") or headers.get("x-shopify-event-id") or _body_digest(raw_body)
        return WebhookEnvelope(event_id, topic, body, headers.get("x-shopify-shop-domain"))

    if provider == ConnectorType.TIENDANUBE.value:
        event_type = body.get("event")
        if not event_type:
            raise MalformedWebhookError("Tiendanube webhook missing event")
        store_id = body.get("store_id")
        # No delivery id; an identical body is the same event
        return WebhookEnvelope(_body_digest(raw_body), event_type, body, str(store_id) if store_id else None)

    event_type = body.get("type") or body.get("event")
    if not event_type:
        raise MalformedWebhookError("Webhook missing event type")
    data = body.get("data")
    payload = data if isinstance(data, dict) else body
    return WebhookEnvelope(str(body.get("id") or _body_digest(raw_body)), event_type, payload)


class WebhookGateway:
    """Single entry point for inbound provider webhooks."""

    def __init__(
        self,
        registry: Optional[ConnectorRegistry] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        realtime=None,
        max_attempts: Optional[int] = None,
        tolerance_seconds: Optional[int] = None,
        processing_lease_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry or build_default_registry()
        self.session_factory = session_factory
        self.realtime = realtime
        self.max_attempts = max_attempts or settings.webhook_max_attempts
        self.tolerance_seconds = tolerance_seconds or settings.webhook_timestamp_tolerance_seconds
        self.processing_lease_seconds = processing_lease_seconds or settings.webhook_processing_lease_seconds
        self.clock = clock

    async def handle(
        self,
        provider: str,
        raw_body: bytes,
        headers: Mapping[str, str],
        query: Optional[Mapping[str, str]] = None,
    ) -> WebhookResponse:
        headers = {k.lower(): v for k, v in headers.items()}
        query = dict(query or {})

        if not self.registry.supports(provider):
            log.warning(f"Webhook for unsupported provider '{provider}'")
            return WebhookResponse(False, False, 400, error=f"Unsupported provider: {provider}")

        db = self.session_factory()
        try:
            try:
                envelope = parse_envelope(provider, raw_body, headers)
                connector = self.resolve_connector(db, provider, envelope, query)
                self.verify(provider, raw_body, headers, connector)
            except WebhookError as e:
                log.warning(f"Rejected {provider} webhook: {e}")
                return WebhookResponse(False, False, e.status_code, error=str(e))

            return await self._process(db, provider, envelope, connector)
        finally:
            db.close()

    # Verification

    def verify(self, provider: str, raw_body: bytes, headers: Mapping[str, str], connector: Optional[Connector]):
        secret = (connector.webhook_secret if connector is not None else None) or settings.webhook_secret_for(provider)
        if not secret:
            raise WebhookVerificationError(f"No webhook secret configured for {provider}")

        if provider == ConnectorType.SHOPIFY.value:
            valid = verifiers.verify_shopify(raw_body, headers.get(SHOPIFY_HMAC_HEADER), secret)
        elif provider == ConnectorType.TIENDANUBE.value and TIENDANUBE_HMAC_HEADER in headers:
            valid = verifiers.verify_hex(raw_body, headers.get(TIENDANUBE_HMAC_HEADER), secret)
        else:
            header_name = STRIPE_SIGNATURE_HEADER if provider == ConnectorType.STRIPE.value else SIGNATURE_HEADER
            valid = verifiers.verify_timestamped(
                raw_body, headers.get(header_name), secret, self.tolerance_seconds, now=self.clock()
            )

        if not valid:
            raise WebhookVerificationError("Invalid webhook signature")

    # Routing

    def resolve_connector(self, db: Session, provider: str, envelope: WebhookEnvelope,
                          query: Mapping[str, str]) -> Optional[Connector]:
        candidates = db.query(Connector).filter(
            Connector.type == provider,
            Connector.is_enabled.is_(True),
        )

        connector_id = query.get("connector_id")
        workspace_id = query.get("workspace_id")
        if connector_id:
            candidates = candidates.filter(Connector.id == connector_id)
        if workspace_id:
            candidates = candidates.filter(Connector.workspace_id == workspace_id)
        if connector_id or workspace_id:
            return candidates.order_by(Connector.created_at).first()

        rows = candidates.order_by(Connector.created_at).all()
        key = envelope.routing_key
        if provider == ConnectorType.SHOPIFY.value and key:
            return next((c for c in rows if _credential(c, "shop_domain", "shopDomain") == key.lower()), None)
        if provider == ConnectorType.TIENDANUBE.value and key:
            return next((c for c in rows if _credential(c, "store_id", "storeId") == key), None)
        if provider == ConnectorType.STRIPE.value:
            if key:
                match = next((c for c in rows if (c.settings or {}).get("account_id") == key), None)
                if match is not None:
                    return match
            return rows[0] if len(rows) == 1 else None
        return None

    # Processing

    async def _process(self, db: Session, provider: str, envelope: WebhookEnvelope,
                       connector: Optional[Connector]) -> WebhookResponse:
        event = db.query(WebhookEvent).filter(
            WebhookEvent.provider == provider,
            WebhookEvent.external_event_id == envelope.event_id,
        ).first()

        if event is not None:
            response = self._replay_response(db, event)
            if response is not None:
                return response
        else:
            event = WebhookEvent(
                provider=provider,
                external_event_id=envelope.event_id,
                event_type=envelope.event_type,
                payload=envelope.payload,
                workspace_id=connector.workspace_id if connector else None,
                connector_id=connector.id if connector else None,
                status=WebhookEventStatus.PENDING.value,
                attempts=0,
                max_attempts=self.max_attempts,
                received_at=datetime.utcnow(),
            )
            try:
                db.add(event)
                db.commit()
            except IntegrityError:
                db.rollback()
                log.info(f"{provider} event {envelope.event_id} is being recorded by a concurrent delivery")
                return WebhookResponse(True, False, 200, event_id=envelope.event_id, action="duplicate")

        if connector is None:
            event.status = WebhookEventStatus.SKIPPED.value
            event.last_error = "No connector found for webhook"
            db.commit()
            log.warning(f"No {provider} connector matched event {envelope.event_id} ({envelope.event_type})")
            return WebhookResponse(True, False, 200, error=event.last_error, event_id=event.id, action="skipped")

        event.status = WebhookEventStatus.PROCESSING.value
        event.attempts = (event.attempts or 0) + 1
        event.processing_started_at = datetime.utcnow()
        db.commit()

        try:
            instance = self.registry.create(connector, db)
            outcome = await instance.process_webhook(envelope.event_type, envelope.payload)
        except Exception as e:
            db.rollback()
            event.status = WebhookEventStatus.FAILED.value
            event.last_error = str(e) or type(e).__name__
            db.commit()
            log.error(
                f"{provider} webhook {envelope.event_type} ({envelope.event_id}) failed on attempt "
                f"{event.attempts}/{event.max_attempts}: {e}"
            )
            return WebhookResponse(True, False, 500, error=event.last_error, event_id=event.id)

        event.status = WebhookEventStatus.COMPLETED.value
        event.processed_at = datetime.utcnow()
        event.last_error = None
        db.commit()

        if self.realtime is not None:
            self.realtime.publish(connector.workspace_id, "webhook.processed", {
                "provider": provider,
                "event_type": envelope.event_type,
                "action": outcome.action,
                "object_id": outcome.object_id,
            })
        return WebhookResponse(True, True, 200, event_id=event.id, action=outcome.action)

    def _replay_response(self, db: Session, event: WebhookEvent) -> Optional[WebhookResponse]:
        """Response for a redelivered event, or None if it should be processed again."""
        if event.status in (WebhookEventStatus.COMPLETED.value, WebhookEventStatus.SKIPPED.value):
            log.info(f"Duplicate {event.provider} event {event.external_event_id}, already {event.status}")
            return WebhookResponse(True, False, 200, event_id=event.id, action="duplicate")
        if event.status == WebhookEventStatus.PROCESSING.value:
            started = event.processing_started_at or event.received_at
            lease_expires = started + timedelta(seconds=self.processing_lease_seconds)
            if datetime.utcnow() < lease_expires:
                return WebhookResponse(True, False, 200, event_id=event.id, action="in_progress")
            # The attempt that claimed it never finished (crash or cancelled request)
            log.warning(
                f"{event.provider} event {event.external_event_id} stuck in processing since {started}; "
                f"treating attempt {event.attempts} as failed"
            )
            event.status = WebhookEventStatus.FAILED.value
            event.last_error = event.last_error or "Processing did not finish"
            db.commit()
        if event.attempts >= event.max_attempts:
            log.warning(
                f"{event.provider} event {event.external_event_id} reached {event.max_attempts} attempts; not retrying"
            )
            return WebhookResponse(True, False, 200, error=event.last_error, event_id=event.id, action="abandoned")
        return None


def _credential(connector: Connector, *keys: str) -> Optional[str]:
    credentials = connector.credentials or {}
    for key in keys:
        if credentials.get(key):
            value = str(credentials[key]).lower()
            return value.replace("https://", "").replace("http://", "").rstrip("/")
    return None
