"""Inbound provider webhooks"""

from bizos.webhooks.gateway import WebhookGateway, WebhookResponse

__all__ = ["WebhookGateway", "WebhookResponse"]
