from __future__ import annotations

import httpx
import pytest

from clients.directory import DeviceDirectoryClient, DirectoryError, UserDirectoryClient

DEVICES = {
    7: {"id": 7, "name": "Fridge", "type": "REFRIGERATOR", "location": "Kitchen", "userId": 42},
    8: {"id": 8, "name": "TV", "type": "TELEVISION", "location": "Lounge", "userId": 42},
}
USERS = {
    42: {
        "id": 42,
        "firstName": "Ada",
        "lastName": "Byron",
        "email": "ada@example.com",
        "address": "1 Analytical Way",
        "alertEnabled": True,
        "energyAlertThreshold": 4.0,
    }
}


def _handler(request: httpx.Request) -> httpx.Response:
    parts = request.url.path.strip("/").split("/")
    if parts[:3] == ["api", "v1", "device"]:
        if parts[3] == "user":
            user_id = int(parts[4])
            if user_id == 500:
                return httpx.Response(500, json={"error": "boom"})
            return httpx.Response(
                200, json=[d for d in DEVICES.values() if d["userId"] == user_id]
            )
        device = DEVICES.get(int(parts[3]))
        if device is None:
            return httpx.Response(404)
        return httpx.Response(200, json=device)
    if parts[:3] == ["api", "v1", "user"]:
        user = USERS.get(int(parts[3]))
        return httpx.Response(200, json=user) if user else httpx.Response(404)
    return httpx.Response(400)


def _devices(handler=_handler) -> DeviceDirectoryClient:
    return DeviceDirectoryClient("http://devices/", transport=httpx.MockTransport(handler))


def _users(handler=_handler) -> UserDirectoryClient:
    return UserDirectoryClient("http://users", transport=httpx.MockTransport(handler))


def test_get_device_returns_record() -> None:
    device = _devices().get_device(7)

    assert device is not None
    assert device.name == "Fridge"
    assert device.user_id == 42


def test_get_device_not_found_returns_none() -> None:
    assert _devices().get_device(404) is None


def test_get_devices_for_user_keeps_order() -> None:
    devices = _devices().get_devices_for_user(42)

    assert [device.id for device in devices] == [7, 8]


def test_get_devices_for_unknown_user_is_empty() -> None:
    assert _devices().get_devices_for_user(1) == []


def test_server_error_raises_directory_error() -> None:
    with pytest.raises(DirectoryError):
        _devices().get_devices_for_user(500)


def test_timeout_raises_directory_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(DirectoryError):
        _devices(handler).get_device(7)


def test_invalid_json_raises_directory_error() -> None:
    handler = lambda request: httpx.Response(200, text="<html>")  # noqa: E731

    with pytest.raises(DirectoryError):
        _users(handler).get_user(42)


def test_get_user_maps_alert_preferences() -> None:
    user = _users().get_user(42)

    assert user is not None
    assert user.alert_enabled is True
    assert user.energy_alert_threshold == 4.0
    assert user.email == "ada@example.com"


def test_get_user_not_found_returns_none() -> None:
    assert _users().get_user(9) is None


def test_empty_body_is_treated_as_missing() -> None:
    assert _users(lambda request: httpx.Response(200)).get_user(42) is None
