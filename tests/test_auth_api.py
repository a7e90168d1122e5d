from unittest.mock import patch

from tests.base import *  # noqa: F401,F403


class AuthApiTests(TrustCoreBase):
    def _login(self, email, password=DEFAULT_PASSWORD):
        return self.client.post("/login", json={"email": email, "password": password})

    def test_login_refresh_logout_cycle(self):
        user_id = self.make_user(email="cycle@example.com", role=Role.MANAGEMENT)
        login = self._login("cycle@example.com")
        self.assertEqual(login.status_code, 200)
        body = login.json()
        self.assertEqual(body["token_type"], "bearer")
        self.assertEqual(body["role"], int(Role.MANAGEMENT))
        self.assertEqual(body["user_id"], str(user_id))
        self.assertEqual(body["expires_in"], 900)
        self.assertEqual(login.headers.get("cache-control"), "no-store")

        refreshed = self.client.post("/refresh", json={"refresh_token": body["refresh_token"]})
        self.assertEqual(refreshed.status_code, 200)
        new_refresh = refreshed.json()["refresh_token"]
        self.assertNotEqual(new_refresh, body["refresh_token"])

        reused = self.client.post("/refresh", json={"refresh_token": body["refresh_token"]})
        self.assertEqual(reused.status_code, 401)
        self.assertEqual(reused.json()["code"], "token_invalid")

        logout = self.client.post(
            "/logout", headers={"Authorization": f"Bearer {refreshed.json()['access_token']}"}
        )
        self.assertEqual(logout.status_code, 200)
        after_logout = self.client.post("/refresh", json={"refresh_token": new_refresh})
        self.assertEqual(after_logout.status_code, 401)
        self.assertEqual(after_logout.json()["code"], "token_invalid")

    def test_login_failures_map_to_status_codes(self):
        self.make_user(email="known@example.com")
        self.make_user(email="pending@example.com", verified=False)

        unknown = self._login("missing@example.com")
        wrong = self._login("known@example.com", "bad-password")
        self.assertEqual(unknown.status_code, 401)
        self.assertEqual(wrong.status_code, 401)
        self.assertEqual(unknown.json(), wrong.json())
        self.assertEqual(unknown.headers.get("www-authenticate"), "Bearer")

        pending = self._login("pending@example.com")
        self.assertEqual(pending.status_code, 403)
        self.assertEqual(pending.json()["code"], "not_verified")

    def test_revoked_refresh_is_reported(self):
        user_id = self.make_user(email="revoked@example.com")
        token = self._login("revoked@example.com").json()["refresh_token"]
        with self.SessionLocal() as db:
            user = db.get(User, user_id)
            user.refresh_revoked = True
            db.commit()
        response = self.client.post("/refresh", json={"refresh_token": token})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "token_revoked")

    def test_logout_requires_bearer(self):
        response = self.client.post("/logout")
        self.assertEqual(response.status_code, 401)
        garbage = self.client.post("/logout", headers={"Authorization": "Bearer not-a-jwt"})
        self.assertEqual(garbage.status_code, 401)
        self.assertEqual(garbage.json()["code"], "token_invalid")

    def test_login_is_rate_limited_per_subject_and_ip(self):
        self.make_user(email="limited@example.com")
        with patch.object(settings, "LOGIN_RATE_LIMIT", 2):
            self.assertEqual(self._login("limited@example.com", "x").status_code, 401)
            self.assertEqual(self._login("limited@example.com", "x").status_code, 401)
            blocked = self._login("limited@example.com")
        self.assertEqual(blocked.status_code, 429)
        self.assertEqual(blocked.json()["code"], "rate_limited")
        self.assertIsNotNone(blocked.headers.get("retry-after"))
