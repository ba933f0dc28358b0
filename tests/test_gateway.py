import httpx
import pytest

from services.payment_service.exceptions import GatewayUnavailable
from services.payment_service.gateway import InstamojoGateway, mask


def gateway_for(settings, handler):
    return InstamojoGateway(settings, transport=httpx.MockTransport(handler))


async def test_create_payment_request_sends_form_and_auth_headers(settings):
    seen = {}

    def handler(request):
        seen["request"] = request
        return httpx.Response(201, json={"payment_request": {"id": "PR_9"}})

    resp = await gateway_for(settings, handler).create_payment_request({"amount": "10.00", "purpose": "Ticket"})

    request = seen["request"]
    assert request.url == "https://instamojo.test/api/1.1/payment-requests/"
    assert request.headers["X-Api-Key"] == "test_api_key_123"
    assert request.headers["X-Auth-Token"] == "test_auth_token_456"
    assert request.headers["Content-Type"] == "application/x-www-form-urlencoded"
    assert resp.ok
    assert resp.data["payment_request"]["id"] == "PR_9"


async def test_non_2xx_is_returned_not_raised(settings):
    def handler(request):
        return httpx.Response(401, json={"success": False, "message": "Invalid token"})

    resp = await gateway_for(settings, handler).get_payment("MOJO1")

    assert resp.status_code == 401
    assert not resp.ok
    assert resp.data["message"] == "Invalid token"


async def test_non_json_body_is_kept_raw(settings):
    def handler(request):
        return httpx.Response(502, text="<html>Bad gateway</html>")

    resp = await gateway_for(settings, handler).get_payment_request("PR_1")

    assert resp.data == {"raw": "<html>Bad gateway</html>"}


async def test_transport_failure_raises_gateway_unavailable(settings):
    def handler(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    with pytest.raises(GatewayUnavailable):
        await gateway_for(settings, handler).get_payment("MOJO1")


async def test_ids_are_path_quoted(settings):
    seen = {}

    def handler(request):
        seen["path"] = request.url.raw_path
        return httpx.Response(200, json={})

    await gateway_for(settings, handler).get_payment("a/b")

    assert seen["path"] == b"/api/1.1/payments/a%2Fb/"


def test_mask_hides_secrets():
    assert mask("test_api_key_123") == "test..._123"
    assert mask("short") == "****"
    assert mask("") == "****"
