from sqlalchemy import update

from tests.base import *  # noqa: F401,F403
from turcrm.services.security_audit import ACTION_LOGIN, record_security_event


class SecurityAuditTests(TrustCoreBase):
    def test_audit_write_keeps_pending_bulk_updates(self):
        user_id = self.make_user(email="audit@example.com")
        with self.SessionLocal() as db:
            db.execute(
                update(User)
                .where(User.id == user_id)
                .values(company_name="ТОО Аудит")
                .execution_options(synchronize_session=False)
            )
            record_security_event(db, action=ACTION_LOGIN, allowed=True, subject="audit@example.com")
            db.commit()

        self.assertEqual(self.load(User, user_id).company_name, "ТОО Аудит")
        events = self.audit_actions(ACTION_LOGIN)
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].subject, "audit@example.com")

    def test_failed_login_is_persisted_immediately(self):
        with self.SessionLocal() as db:
            record_security_event(
                db,
                action=ACTION_LOGIN,
                allowed=False,
                subject="ghost@example.com",
                reason="invalid_credentials",
                persist_now=True,
            )
        events = self.audit_actions(ACTION_LOGIN)
        self.assertEqual(len(events), 1)
        self.assertFalse(events[0].allowed)
        self.assertEqual(events[0].actor_role, "ANONYMOUS")

    def test_revoke_survives_audit_write(self):
        user_id = self.make_user(email="kept@example.com")
        with self.SessionLocal() as db:
            self.issuer.login(db, "kept@example.com", DEFAULT_PASSWORD)
            self.issuer.revoke(db, user_id)
        user = self.load(User, user_id)
        self.assertIsNone(user.refresh_token)
        self.assertTrue(user.refresh_revoked)
