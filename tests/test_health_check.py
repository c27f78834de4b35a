import os
import unittest

os.environ.setdefault("DATABASE_URL", "sqlite://")

import httpx

from affiliate_api.app.health_check import check_url_health, determine_health_status, format_response_time


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=False)


class HealthCheckTests(unittest.IsolatedAsyncioTestCase):
    async def test_ok_is_healthy(self):
        async with _client(lambda request: httpx.Response(200)) as client:
            result = await check_url_health("https://shop.example.com/p/1", client=client)
        self.assertEqual(result.status, "healthy")
        self.assertEqual(result.status_code, 200)
        self.assertIsNone(result.error)

    async def test_not_found_is_unhealthy(self):
        async with _client(lambda request: httpx.Response(404)) as client:
            result = await check_url_health("https://shop.example.com/gone", client=client)
        self.assertEqual(result.status, "unhealthy")
        self.assertEqual(result.status_code, 404)

    async def test_redirect_with_location_is_healthy(self):
        def handler(request):
            return httpx.Response(302, headers={"Location": "https://shop.example.com/new"})

        async with _client(handler) as client:
            result = await check_url_health("https://amzn.example/abc", client=client)
        self.assertEqual(result.status, "healthy")
        self.assertEqual(result.status_code, 302)

    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        async with _client(handler) as client:
            result = await check_url_health("https://slow.example.com", client=client)
        self.assertEqual(result.status, "timeout")
        self.assertEqual(result.error, "Request timeout")
        self.assertIsNone(result.status_code)

    async def test_connection_error_is_unhealthy(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler) as client:
            result = await check_url_health("https://down.example.com", client=client)
        self.assertEqual(result.status, "unhealthy")
        self.assertEqual(result.error, "connection refused")

    async def test_unsupported_scheme_makes_no_request(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200)

        async with _client(handler) as client:
            result = await check_url_health("ftp://files.example.com/x", client=client)
        self.assertEqual(result.status, "unhealthy")
        self.assertIn("Unsupported protocol: ftp", result.error)
        self.assertEqual(calls, [])


class HealthHelpersTests(unittest.TestCase):
    def test_determine_health_status(self):
        self.assertEqual(determine_health_status(None, "Request timeout"), "timeout")
        self.assertEqual(determine_health_status(None, "boom"), "unhealthy")
        self.assertEqual(determine_health_status(204, None), "healthy")
        self.assertEqual(determine_health_status(503, None), "unhealthy")
        self.assertEqual(determine_health_status(None, None), "unknown")

    def test_format_response_time(self):
        self.assertEqual(format_response_time(250), "250ms")
        self.assertEqual(format_response_time(1234), "1.2s")


if __name__ == "__main__":
    unittest.main()
