"""OneSignal push notification client.

Wraps the provider's REST API. Every public call returns a
``DeliverySuccess`` or ``DeliveryFailure``; nothing is raised past this
module so the scheduler stays the only place that decides about retries.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from lead_notifier.config import OneSignalSettings
from lead_notifier.models.delivery import (
    DeliveryFailure,
    DeliveryOutcome,
    DeliveryRequest,
    DeliverySuccess,
    Recipients,
)

logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


class OneSignalClient:
    """Send push notifications through OneSignal."""

    def __init__(
        self,
        settings: OneSignalSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            settings: Provider configuration, read once here
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self.app_id = settings.app_id or ""
        self.rest_api_key = settings.rest_api_key or ""
        self.enabled = settings.enabled
        self.api_url = settings.api_url.rstrip("/")
        self.timeout = settings.timeout_seconds
        self._transport = transport

    def is_configured(self) -> bool:
        """Whether both the app ID and the REST API key are set."""
        return bool(self.app_id) and bool(self.rest_api_key)

    def is_enabled(self) -> bool:
        """Whether delivery is switched on and possible."""
        return self.enabled and self.is_configured()

    def get_configuration(self) -> Dict[str, Any]:
        """Configuration summary that is safe to expose to operators."""
        return {
            "enabled": self.enabled,
            "configured": self.is_configured(),
            "app_id": f"{self.app_id[:8]}..." if self.app_id else None,
            "has_api_key": bool(self.rest_api_key),
            "timeout": self.timeout,
        }

    async def send(self, request: DeliveryRequest) -> DeliveryOutcome:
        """
        Broadcast a notification to the "All" segment.

        Args:
            request: Title, message and data for this attempt

        Returns:
            DeliverySuccess or DeliveryFailure
        """
        start = time.perf_counter()

        if not self.is_configured():
            logger.error("OneSignal notification failed - service not configured")
            return DeliveryFailure(
                message="OneSignal service is not properly configured",
                error_code="configuration_error",
            )

        try:
            logger.info(
                f"Sending OneSignal notification '{request.title}' for {request.email}"
            )
            payload = self._build_payload(request)
            response = await self._request("POST", "notifications", json=payload)
            response_time = _elapsed_ms(start)

            if response.is_success:
                data = self._json_body(response) or {}
                logger.info(
                    f"OneSignal notification sent: id={data.get('id')} "
                    f"recipients={data.get('recipients')} ({response_time}ms)"
                )
                return DeliverySuccess(
                    notification_id=data.get("id"),
                    recipients=self._extract_recipients(data),
                    response_time_ms=response_time,
                    raw_response=data,
                )

            failure = self._failure_from_response(response, response_time)
            logger.warning(
                f"OneSignal notification failed: {failure.error_code} {failure.message} "
                f"({response_time}ms)"
            )
            return failure

        except httpx.TimeoutException as e:
            response_time = _elapsed_ms(start)
            logger.error(f"OneSignal request timed out after {response_time}ms: {e}")
            return DeliveryFailure(
                message="OneSignal API request timed out",
                error_code="timeout",
                error_details={"exception": str(e)},
                response_time_ms=response_time,
            )
        except httpx.TransportError as e:
            response_time = _elapsed_ms(start)
            logger.error(f"OneSignal connection failed: {e}")
            return DeliveryFailure(
                message="Failed to connect to OneSignal API",
                error_code="connection_error",
                error_details={"exception": str(e)},
                response_time_ms=response_time,
            )
        except Exception as e:
            response_time = _elapsed_ms(start)
            logger.error(f"OneSignal unexpected error: {e}", exc_info=True)
            return DeliveryFailure(
                message="Unexpected error occurred",
                error_code="unexpected_error",
                error_details={"exception": str(e), "exception_class": type(e).__name__},
                response_time_ms=response_time,
            )

    async def test_connection(self) -> DeliveryOutcome:
        """Fetch app metadata to verify credentials and reachability."""
        start = time.perf_counter()

        if not self.is_configured():
            return DeliveryFailure(
                message="OneSignal service is not configured",
                error_code="configuration_error",
            )

        try:
            response = await self._request("GET", f"apps/{self.app_id}")
            response_time = _elapsed_ms(start)

            if response.is_success:
                return DeliverySuccess(
                    response_time_ms=response_time,
                    raw_response=self._json_body(response),
                )
            return self._failure_from_response(response, response_time)

        except httpx.TimeoutException as e:
            return DeliveryFailure(
                message=f"Connection test timed out: {e}",
                error_code="timeout",
                error_details={"exception": str(e)},
                response_time_ms=_elapsed_ms(start),
            )
        except httpx.TransportError as e:
            return DeliveryFailure(
                message=f"Connection test failed: {e}",
                error_code="connection_error",
                error_details={"exception": str(e)},
                response_time_ms=_elapsed_ms(start),
            )
        except Exception as e:
            logger.error(f"OneSignal connection test error: {e}", exc_info=True)
            return DeliveryFailure(
                message=f"Connection test failed: {e}",
                error_code="unexpected_error",
                error_details={"exception": str(e), "exception_class": type(e).__name__},
                response_time_ms=_elapsed_ms(start),
            )

    def _build_payload(self, request: DeliveryRequest) -> Dict[str, Any]:
        return {
            "app_id": self.app_id,
            "included_segments": ["All"],
            "headings": {"en": request.title},
            "contents": {"en": request.message},
            "data": {
                "sent_at": datetime.now(timezone.utc).isoformat(),
                **request.data,
            },
        }

    async def _request(
        self,
        method: str,
        endpoint: str,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        headers = {
            "Authorization": f"Basic {self.rest_api_key}",
            "Content-Type": "application/json",
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            return await client.request(method, url, headers=headers, json=json)

    @staticmethod
    def _json_body(response: httpx.Response) -> Optional[Dict[str, Any]]:
        try:
            body = response.json()
        except ValueError:
            return None
        return body if isinstance(body, dict) else {"body": body}

    def _failure_from_response(
        self, response: httpx.Response, response_time: float
    ) -> DeliveryFailure:
        body = self._json_body(response)
        message = response.text or f"HTTP {response.status_code}"
        if body:
            errors = body.get("errors")
            if isinstance(errors, list) and errors:
                message = str(errors[0])
            elif isinstance(errors, dict) and errors:
                message = str(next(iter(errors.values())))
        return DeliveryFailure(
            message=message,
            error_code=str(response.status_code),
            error_details=body,
            response_time_ms=response_time,
            raw_response=body,
        )

    @staticmethod
    def _extract_recipients(data: Dict[str, Any]) -> Recipients:
        count = data.get("recipients") or 0
        return Recipients(total=count, successful=count, failed=0)


def get_onesignal_client(settings: Optional[OneSignalSettings] = None) -> OneSignalClient:
    """Factory for OneSignalClient."""
    if settings is None:
        from lead_notifier.config import get_settings

        settings = get_settings().onesignal
    return OneSignalClient(settings)
