"""HTTP clients for the device and user directories."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import httpx
from pydantic import ValidationError

from app.schemas import DeviceRecord, UserRecord

logger = logging.getLogger(__name__)


class DirectoryError(RuntimeError):
    """A directory lookup failed for a reason other than not-found."""


class _DirectoryClient:

    service_name = "directory"

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"), timeout=timeout, transport=transport
        )

    def close(self) -> None:
        self._client.close()

    def _get_json(self, path: str) -> Any:
        """Return the decoded body, or ``None`` when the record does not exist."""
        logger.debug("Calling %s: %s", self.service_name, path)
        try:
            response = self._client.get(path)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            if not response.content:
                return None
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise DirectoryError(
                f"{self.service_name} returned {exc.response.status_code} for {path}"
            ) from exc
        except httpx.HTTPError as exc:
            raise DirectoryError(f"{self.service_name} request to {path} failed: {exc}") from exc
        except ValueError as exc:
            raise DirectoryError(f"{self.service_name} sent an invalid body for {path}") from exc


class DeviceDirectoryClient(_DirectoryClient):

    service_name = "device-service"

    def get_device(self, device_id: int) -> Optional[DeviceRecord]:
        payload = self._get_json(f"/api/v1/device/{device_id}")
        if payload is None:
            return None
        try:
            device = DeviceRecord.model_validate(payload)
        except ValidationError as exc:
            raise DirectoryError(f"Malformed device record for {device_id}") from exc
        return device if device.id is not None else None

    def get_devices_for_user(self, user_id: int) -> List[DeviceRecord]:
        payload = self._get_json(f"/api/v1/device/user/{user_id}")
        if payload is None:
            logger.warning("No device list returned", extra={"user_id": user_id})
            return []
        if not isinstance(payload, list):
            raise DirectoryError(f"Expected a device list for user {user_id}")
        try:
            return [DeviceRecord.model_validate(item) for item in payload]
        except ValidationError as exc:
            raise DirectoryError(f"Malformed device list for user {user_id}") from exc


class UserDirectoryClient(_DirectoryClient):

    service_name = "user-service"

    def get_user(self, user_id: int) -> Optional[UserRecord]:
        payload = self._get_json(f"/api/v1/user/{user_id}")
        if payload is None:
            return None
        try:
            user = UserRecord.model_validate(payload)
        except ValidationError as exc:
            raise DirectoryError(f"Malformed user record for {user_id}") from exc
        return user if user.id is not None else None
