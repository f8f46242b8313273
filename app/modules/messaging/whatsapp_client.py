"""WhatsApp Business (Meta Graph API) client with bounded, retried sends"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from app.config import settings
from app.core.resilience import with_retry

logger = logging.getLogger(__name__)


@dataclass
class GraphResponse:
    ok: bool
    status_code: int
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def message_id(self) -> Optional[str]:
        messages = self.data.get("messages") or []
        return messages[0].get("id") if messages else None

    @property
    def error_message(self) -> Optional[str]:
        if self.ok:
            return None
        return (self.data.get("error") or {}).get("message") or "Unknown error"


def build_payload(to: str, message: Optional[str] = None, document_url: Optional[str] = None,
                  document_filename: Optional[str] = None, caption: Optional[str] = None) -> Dict[str, Any]:
    if document_url and document_filename:
        return {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "document",
            "document": {
                "link": document_url,
                "filename": document_filename,
                "caption": caption or message or "",
            },
        }
    return {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to,
        "type": "text",
        "text": {"preview_url": False, "body": message},
    }


class WhatsAppClient:
    def __init__(self, phone_id: Optional[str] = None, access_token: Optional[str] = None,
                 graph_url: Optional[str] = None):
        self.phone_id = phone_id or settings.whatsapp_phone_id
        self.access_token = access_token or settings.whatsapp_access_token
        self.graph_url = (graph_url or settings.whatsapp_graph_url).rstrip("/")

    @property
    def configured(self) -> bool:
        return bool(self.phone_id and self.access_token)

    @property
    def messages_url(self) -> str:
        return f"{self.graph_url}/{self.phone_id}/messages"

    def _post(self, payload: Dict[str, Any]) -> GraphResponse:
        with httpx.Client(timeout=settings.request_timeout_seconds) as client:
            response = client.post(
                self.messages_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.access_token}"},
            )
        # 5xx is raised so with_retry can try again; 4xx is a final answer
        if response.status_code >= 500:
            response.raise_for_status()
        try:
            data = response.json()
        except ValueError:
            data = {}
        return GraphResponse(ok=response.is_success, status_code=response.status_code, data=data)

    def send(self, payload: Dict[str, Any]) -> GraphResponse:
        """POST a message payload; raises httpx.HTTPError or AppError once retries are spent"""
        return with_retry(
            lambda: self._post(payload),
            retries=settings.max_retries,
            base_delay=settings.retry_delay_seconds,
            timeout_seconds=settings.request_timeout_seconds,
            operation="WhatsApp send",
        )
