# app/services/backend/scheduling_api_client.py
import httpx
import logging
from datetime import datetime
from typing import Optional, List, Dict, Any, Type

from pydantic import ValidationError

from app.config.settings import Settings
from app.schemas.scheduling import (
    Appointment,
    ProviderAvailability,
    ProviderBlock,
    ScheduleSnapshot,
    TenantBusinessHour,
)
from app.services.scheduling.errors import (
    AppointmentConflict,
    AppointmentNotFound,
    BackendRejected,
    BackendUnavailable,
    PermissionDenied,
    SchedulingError,
)
from app.services.scheduling.time_grid import format_wall_clock

logger = logging.getLogger(__name__)

SNAPSHOT_KEYS = ("appointments", "tenant_business_hours", "availabilities", "blocks")
LIST_KEYS = ("business_hours", "availabilities", "blocks", "items")


def create_http_client(settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """Shared client for every call to the scheduling backend"""
    return httpx.AsyncClient(
        base_url=settings.BACKEND_API_URL,
        timeout=settings.BACKEND_TIMEOUT_SECONDS,
        follow_redirects=True,
        headers={"Accept": "application/json"},
        transport=transport,
    )


class SchedulingApiClient:
    """
    Thin client for the scheduling REST backend.

    Carries the caller's bearer token and correlation id; the underlying
    httpx client is shared and owned by the application. Transport failures
    and error responses are translated into SchedulingError subclasses here
    and nowhere else.
    """

    def __init__(
            self,
            http_client: httpx.AsyncClient,
            token: Optional[str] = None,
            correlation_id: Optional[str] = None
    ):
        self.http_client = http_client
        self.token = token
        self.correlation_id = correlation_id

    # ========================================================================
    # Appointments
    # ========================================================================

    async def list_appointments(
            self,
            start: datetime,
            end: datetime,
            provider_id: Optional[int] = None
    ) -> ScheduleSnapshot:
        """Everything the calendar needs for ``[start, end)``"""
        params: Dict[str, Any] = {
            "date_start": format_wall_clock(start),
            "date_end": format_wall_clock(end),
        }
        if provider_id is not None:
            params["provider_id"] = provider_id

        body = await self._request("GET", "agenda/appointments", params=params)
        snapshot = self._parse(ScheduleSnapshot, self.snapshot_payload(body))

        logger.info(
            f"Loaded {len(snapshot.appointments)} appointments, {len(snapshot.blocks)} blocks "
            f"for {params['date_start']} - {params['date_end']} (provider: {provider_id})"
        )
        return snapshot

    async def create_appointment(self, payload: Dict[str, Any]) -> Optional[Appointment]:
        body = await self._request("POST", "agenda/appointments", json=payload)
        return self._parse_appointment(body)

    async def update_appointment(self, appointment_id: int, payload: Dict[str, Any]) -> Optional[Appointment]:
        body = await self._request(
            "PUT", f"agenda/appointments/{appointment_id}", json=payload,
            not_found=AppointmentNotFound
        )
        return self._parse_appointment(body)

    # ========================================================================
    # Provider availability and blocks
    # ========================================================================

    async def list_availabilities(self, provider_id: int) -> List[ProviderAvailability]:
        body = await self._request("GET", f"agenda/providers/{provider_id}/availabilities")
        return self._parse_list(ProviderAvailability, body, provider_id=provider_id)

    async def sync_availabilities(self, provider_id: int, payload: Dict[str, Any]) -> List[ProviderAvailability]:
        """Replace the provider's whole week"""
        body = await self._request("POST", f"agenda/providers/{provider_id}/availabilities/sync", json=payload)
        return self._parse_list(ProviderAvailability, body, provider_id=provider_id)

    async def list_blocks(self, provider_id: int) -> List[ProviderBlock]:
        body = await self._request("GET", f"agenda/providers/{provider_id}/blocks")
        return self._parse_list(ProviderBlock, body, provider_id=provider_id)

    async def create_block(self, provider_id: int, payload: Dict[str, Any]) -> ProviderBlock:
        body = await self._request("POST", f"agenda/providers/{provider_id}/blocks", json=payload)
        if not isinstance(body, dict):
            body = {}
        return self._parse(ProviderBlock, {"provider_id": provider_id, **payload, **body})

    async def delete_block(self, provider_id: int, block_id: int) -> None:
        await self._request("DELETE", f"agenda/providers/{provider_id}/blocks/{block_id}")

    # ========================================================================
    # Tenant business hours
    # ========================================================================

    async def list_business_hours(self, tenant_id: int) -> List[TenantBusinessHour]:
        body = await self._request("GET", f"tenants/{tenant_id}/business-hours")
        return self._parse_list(TenantBusinessHour, body, tenant_id=tenant_id)

    async def sync_business_hours(self, tenant_id: int, payload: Dict[str, Any]) -> List[TenantBusinessHour]:
        body = await self._request("POST", f"tenants/{tenant_id}/business-hours/sync", json=payload)
        return self._parse_list(TenantBusinessHour, body, tenant_id=tenant_id)

    async def ping(self) -> bool:
        """Whether the backend answers at all; used by the health check"""
        try:
            response = await self.http_client.get("", headers=self._headers())
        except httpx.RequestError as e:
            logger.warning(f"Backend ping failed: {e}")
            return False
        return response.status_code < 500

    # ========================================================================
    # Parsing
    # ========================================================================

    @staticmethod
    def unwrap(body: Any) -> Any:
        """Strip a ``{"data": ...}`` envelope"""
        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    @classmethod
    def snapshot_payload(cls, body: Any) -> Dict[str, Any]:
        """
        Normalize the list response.

        The current backend returns an object with the four collections;
        older deployments return a bare list or ``{"data": [...]}`` holding
        appointments only.
        """
        if isinstance(body, dict) and any(key in body for key in SNAPSHOT_KEYS):
            return {key: body.get(key) or [] for key in SNAPSHOT_KEYS}

        unwrapped = cls.unwrap(body)
        if unwrapped is not body:
            return cls.snapshot_payload(unwrapped)
        if isinstance(body, list):
            return {"appointments": body}

        logger.warning(f"Unexpected appointments payload type: {type(body).__name__}")
        return {}

    def _parse_appointment(self, body: Any) -> Optional[Appointment]:
        body = self.unwrap(body)
        if isinstance(body, dict) and isinstance(body.get("appointment"), dict):
            body = body["appointment"]
        if not isinstance(body, dict) or "date_start" not in body:
            return None
        return self._parse(Appointment, body)

    def _parse_list(self, model: Type, body: Any, **defaults) -> List[Any]:
        body = self.unwrap(body)
        if isinstance(body, dict):
            body = next((body[key] for key in LIST_KEYS if isinstance(body.get(key), list)), [])
        if not isinstance(body, list):
            return []
        return [self._parse(model, {**defaults, **item}) for item in body if isinstance(item, dict)]

    @staticmethod
    def _parse(model: Type, payload: Dict[str, Any]) -> Any:
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            logger.error(f"Backend returned an invalid {model.__name__}: {e}")
            raise BackendUnavailable("The scheduling service returned an unexpected response")

    # ========================================================================
    # Transport
    # ========================================================================

    def _headers(self) -> Dict[str, str]:
        headers = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if self.correlation_id:
            headers["X-Correlation-ID"] = self.correlation_id
        return headers

    async def _request(
            self,
            method: str,
            path: str,
            not_found: Type[SchedulingError] = BackendRejected,
            **kwargs
    ) -> Any:
        """
        Send a request and return the decoded body (None when empty).

        Raises:
            BackendUnavailable: timeout, transport error or 5xx
            AppointmentConflict: 409
            PermissionDenied: 401 / 403
            BackendRejected: any other 4xx
        """
        try:
            response = await self.http_client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.TimeoutException:
            logger.error(f"Backend timeout: {method} {path}")
            raise BackendUnavailable("The scheduling service timed out, please try again")
        except httpx.RequestError as e:
            logger.error(f"Backend request error: {method} {path}: {e}")
            raise BackendUnavailable()

        if response.status_code >= 500:
            logger.error(f"Backend error {response.status_code}: {method} {path}")
            raise BackendUnavailable()

        if response.status_code >= 400:
            message = self._error_message(response)
            logger.warning(f"Backend rejected {method} {path} ({response.status_code}): {message}")
            if response.status_code == 409:
                raise AppointmentConflict(message)
            if response.status_code in (401, 403):
                raise PermissionDenied(message)
            if response.status_code == 404:
                raise not_found(message)
            raise BackendRejected(message)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            logger.error(f"Backend returned non-JSON body: {method} {path}")
            raise BackendUnavailable("The scheduling service returned an unexpected response")

    @staticmethod
    def _error_message(response: httpx.Response) -> Optional[str]:
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, dict):
            message = body.get("message") or body.get("detail") or body.get("error")
            return str(message) if message else None
        return None
