from datetime import timedelta
from unittest.mock import patch

from tests.base import *  # noqa: F401,F403
from turcrm.services.otp_policy import OtpPolicy, code_matches, generate_code, strict_policy
from turcrm.services.security_audit import ACTION_PHONE_CONFIRM
from turcrm.services.sms_service import SmsDeliveryError
from turcrm.services.verification_service import PhoneVerificationService

SMS_OK = {"provider": "dummy", "status": "accepted", "message_id": "msg-1"}


class PhoneVerificationTests(TrustCoreBase):
    def setUp(self):
        super().setUp()
        self.service = PhoneVerificationService(strict_policy(settings))
        sms_patch = patch("turcrm.services.verification_service.send_sms", return_value=SMS_OK)
        self.send_sms = sms_patch.start()
        self.addCleanup(sms_patch.stop)

    def _send(self, user_id, code="123456", phone=None):
        with patch("turcrm.services.verification_service.generate_code", return_value=code):
            with self.SessionLocal() as db:
                return self.service.send_code(db, user_id, phone)

    def _confirm(self, user_id, code):
        with self.SessionLocal() as db:
            return self.service.confirm_code(db, user_id, code)

    def _rows(self, user_id):
        with self.SessionLocal() as db:
            rows = (
                db.query(UserVerification)
                .filter(UserVerification.user_id == user_id)
                .order_by(UserVerification.sent_at.asc())
                .all()
            )
            for row in rows:
                db.expunge(row)
            return rows

    def test_send_stores_hash_only_and_dispatches_code(self):
        user_id = self.make_user(verified=False, phone="+77011112233")
        result = self._send(user_id, "482913")

        self.assertEqual(result["status"], "sent")
        self.assertEqual(result["ttl_seconds"], 300)
        self.assertEqual(result["message_id"], "msg-1")
        kwargs = self.send_sms.call_args.kwargs
        self.assertEqual(kwargs["phone"], "+77011112233")
        self.assertIn("482913", kwargs["text"])

        rows = self._rows(user_id)
        self.assertEqual(len(rows), 1)
        self.assertNotEqual(rows[0].code_hash, "482913")
        self.assertNotIn("482913", rows[0].code_hash)
        self.assertTrue(code_matches(self.service.policy, rows[0].code_hash, "482913"))
        self.assertEqual(rows[0].attempts, 0)
        self.assertFalse(rows[0].confirmed)

    def test_fourth_send_inside_window_is_throttled(self):
        user_id = self.make_user(verified=False)
        for _ in range(3):
            self._send(user_id)
        with self.assertRaises(ResendThrottled):
            self._send(user_id)
        self.assertEqual(len(self._rows(user_id)), 3)
        self.assertEqual(self.send_sms.call_count, 3)

    def test_sends_outside_window_do_not_count(self):
        user_id = self.make_user(verified=False)
        for _ in range(3):
            self._send(user_id)
        with self.SessionLocal() as db:
            for row in db.query(UserVerification).filter(UserVerification.user_id == user_id).all():
                row.sent_at = utcnow() - timedelta(minutes=11)
            db.commit()
        result = self._send(user_id)
        self.assertEqual(result["status"], "sent")

    def test_gateway_failure_leaves_no_record(self):
        user_id = self.make_user(verified=False)
        self.send_sms.side_effect = SmsDeliveryError("gateway down")
        with self.assertRaises(SmsDeliveryError):
            self._send(user_id)
        self.assertEqual(self._rows(user_id), [])

    def test_phone_must_match_registered_phone(self):
        user_id = self.make_user(verified=False, phone="+77011112233")
        with self.assertRaises(InvalidInput):
            self._send(user_id, phone="+77019998877")
        result = self._send(user_id, phone="8 701 111 22 33")
        self.assertEqual(result["status"], "sent")

    def test_missing_phone_is_invalid_input(self):
        user_id = self.make_user(verified=False, phone=None)
        with self.assertRaises(InvalidInput):
            self._send(user_id)
        self._send(user_id, phone="+77015550000")
        self.assertEqual(self.load(User, user_id).phone, "+77015550000")

    def test_unknown_user_is_not_found(self):
        with self.assertRaises(NotFound):
            self._send(uuid4())

    def test_correct_code_verifies_user(self):
        user_id = self.make_user(verified=False)
        self._send(user_id, "654321")
        user = self._confirm(user_id, "654321")
        self.assertTrue(user.is_verified)
        self.assertIsNotNone(user.verified_at)
        rows = self._rows(user_id)
        self.assertTrue(rows[-1].confirmed)
        self.assertIsNotNone(rows[-1].confirmed_at)
        allowed = [row for row in self.audit_actions(ACTION_PHONE_CONFIRM) if row.allowed]
        self.assertEqual(len(allowed), 1)

    def test_confirmed_record_cannot_be_replayed(self):
        user_id = self.make_user(verified=False)
        self._send(user_id, "654321")
        self._confirm(user_id, "654321")
        with self.assertRaises(CodeInvalid):
            self._confirm(user_id, "654321")

    def test_reconfirming_verified_user_keeps_first_timestamp(self):
        user_id = self.make_user(verified=False)
        self._send(user_id, "111111")
        first = self._confirm(user_id, "111111")
        first_verified_at = first.verified_at

        self._send(user_id, "222222")
        again = self._confirm(user_id, "222222")
        self.assertTrue(again.is_verified)
        self.assertEqual(again.verified_at, first_verified_at)

    def test_only_latest_record_is_consulted(self):
        user_id = self.make_user(verified=False)
        self._send(user_id, "111111")
        self._send(user_id, "222222")
        with self.assertRaises(CodeInvalid):
            self._confirm(user_id, "111111")
        self.assertTrue(self._confirm(user_id, "222222").is_verified)

    def test_confirm_without_any_send_is_code_invalid(self):
        user_id = self.make_user(verified=False)
        with self.assertRaises(CodeInvalid):
            self._confirm(user_id, "123456")

    def test_expired_code_is_rejected(self):
        user_id = self.make_user(verified=False)
        self._send(user_id, "123456")
        with self.SessionLocal() as db:
            row = db.query(UserVerification).filter(UserVerification.user_id == user_id).one()
            row.expires_at = utcnow() - timedelta(seconds=1)
            db.commit()
        with self.assertRaises(CodeExpired):
            self._confirm(user_id, "123456")
        self.assertFalse(self.load(User, user_id).is_verified)

    def test_wrong_codes_count_attempts_and_cap_forces_expiry(self):
        user_id = self.make_user(verified=False)
        self._send(user_id, "123456")
        for expected in range(1, 5):
            with self.assertRaises(CodeInvalid):
                self._confirm(user_id, "000000")
            self.assertEqual(self._rows(user_id)[-1].attempts, expected)

        with self.assertRaises(TooManyAttempts):
            self._confirm(user_id, "000000")
        row = self._rows(user_id)[-1]
        self.assertEqual(row.attempts, 5)
        self.assertFalse(row.confirmed)

        # The cap expired the record, so even the right code no longer works.
        with self.assertRaises(CodeExpired):
            self._confirm(user_id, "123456")
        self.assertFalse(self.load(User, user_id).is_verified)

    def test_register_confirm_wrong_five_times_then_resend_and_confirm(self):
        user_id = self.make_user(verified=False, phone="+77017770000")
        self._send(user_id, "135790")
        for _ in range(4):
            with self.assertRaises(CodeInvalid):
                self._confirm(user_id, "999999")
        with self.assertRaises(TooManyAttempts):
            self._confirm(user_id, "999999")
        with self.assertRaises(CodeExpired):
            self._confirm(user_id, "135790")

        with patch("turcrm.services.verification_service.generate_code", return_value="246802"):
            with self.SessionLocal() as db:
                self.service.resend_code(db, user_id)
        user = self._confirm(user_id, "246802")
        self.assertTrue(user.is_verified)

    def test_attempt_cap_is_reported_even_if_reached_elsewhere(self):
        user_id = self.make_user(verified=False)
        self._send(user_id, "123456")
        with self.SessionLocal() as db:
            row = db.query(UserVerification).filter(UserVerification.user_id == user_id).one()
            row.attempts = 5
            db.commit()
        with self.assertRaises(TooManyAttempts):
            self._confirm(user_id, "123456")

    def test_policy_knobs_drive_behaviour(self):
        policy = OtpPolicy(
            name="tight",
            hash_codes=True,
            ttl=timedelta(minutes=1),
            resend_window=timedelta(minutes=10),
            resend_limit=1,
            max_attempts=1,
            digits=4,
        )
        self.service = PhoneVerificationService(policy)
        self.assertEqual(len(generate_code(policy)), 4)
        user_id = self.make_user(verified=False)
        result = self._send(user_id, "1234")
        self.assertEqual(result["ttl_seconds"], 60)
        with self.assertRaises(ResendThrottled):
            self._send(user_id, "5678")
        with self.assertRaises(TooManyAttempts):
            self._confirm(user_id, "0000")
