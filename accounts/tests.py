from datetime import datetime, timedelta, timezone

import jwt
from django.contrib.auth import get_user_model
from django.http import JsonResponse
from django.test import RequestFactory, TestCase

from .auth import get_user_from_request, issue_access_token, jwt_required


class BearerTokenTests(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user("asha", email="asha@example.com", password="pw")
        self.factory = RequestFactory()

    def _request(self, header=None):
        extra = {"HTTP_AUTHORIZATION": header} if header is not None else {}
        return self.factory.get("/api/orders/mine", **extra)

    def test_issued_token_identifies_user(self):
        token = issue_access_token(self.user)
        self.assertEqual(get_user_from_request(self._request(f"Bearer {token}")), self.user)

    def test_missing_or_malformed_header(self):
        self.assertIsNone(get_user_from_request(self._request()))
        self.assertIsNone(get_user_from_request(self._request("Basic abc")))
        self.assertIsNone(get_user_from_request(self._request("Bearer ")))

    def test_wrong_key_or_expired_token(self):
        forged = jwt.encode({"sub": str(self.user.pk)}, "other-secret", algorithm="HS256")
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        expired = jwt.encode({"sub": str(self.user.pk), "exp": int(past.timestamp())}, "test-jwt-secret", algorithm="HS256")
        with self.assertLogs("accounts.auth", level="INFO"):
            self.assertIsNone(get_user_from_request(self._request(f"Bearer {forged}")))
            self.assertIsNone(get_user_from_request(self._request(f"Bearer {expired}")))

    def test_inactive_user(self):
        token = issue_access_token(self.user)
        self.user.is_active = False
        self.user.save()
        self.assertIsNone(get_user_from_request(self._request(f"Bearer {token}")))

    def test_decorator(self):
        @jwt_required
        def view(request):
            return JsonResponse({"user": request.user.username})

        self.assertEqual(view(self._request()).status_code, 401)
        resp = view(self._request(f"Bearer {issue_access_token(self.user)}"))
        self.assertEqual(resp.status_code, 200)
