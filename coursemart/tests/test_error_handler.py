import json

from django.http import HttpResponse
from django.test import RequestFactory, SimpleTestCase, override_settings

from coursemart.middleware import JsonExceptionMiddleware


@override_settings(DEBUG=False)
class ErrorHandlerTests(SimpleTestCase):
    def test_unknown_url_returns_json_404(self):
        response = self.client.get('/this-url-does-not-exist/')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "not_found")


@override_settings(DEBUG=False)
class JsonExceptionMiddlewareTests(SimpleTestCase):
    def setUp(self):
        self.middleware = JsonExceptionMiddleware(lambda request: HttpResponse("ok"))
        self.factory = RequestFactory()

    def test_api_errors_become_generic_json(self):
        request = self.factory.post("/api/orders/")
        with self.assertLogs("coursemart.middleware", level="ERROR"):
            response = self.middleware.process_exception(request, RuntimeError("db password is hunter2"))
        self.assertEqual(response.status_code, 500)
        body = json.loads(response.content)
        self.assertEqual(body["error"], {"code": "server_error", "message": "Internal server error"})
        self.assertNotIn("hunter2", response.content.decode())

    def test_non_api_paths_are_left_to_django(self):
        request = self.factory.get("/admin/")
        self.assertIsNone(self.middleware.process_exception(request, RuntimeError("boom")))

    def test_passes_through_normal_responses(self):
        self.assertEqual(self.middleware(self.factory.get("/api/orders/mine")).content, b"ok")
