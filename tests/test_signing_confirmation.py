from datetime import timedelta
from unittest.mock import patch

from tests.base import *  # noqa: F401,F403
from turcrm.services.security_audit import ACTION_SIGNING_CONFIRM
from turcrm.services.signing_service import SigningConfirmationService

SMS_OK = {"provider": "dummy", "status": "accepted", "message_id": "sig-1"}


class SigningConfirmationTests(TrustCoreBase):
    def setUp(self):
        super().setUp()
        self.service = SigningConfirmationService(DocumentFlow(sign_from_under_review=True))
        sms_patch = patch("turcrm.services.signing_service.send_sms", return_value=SMS_OK)
        self.send_sms = sms_patch.start()
        self.addCleanup(sms_patch.stop)
        owner_id = self.make_user(role=Role.SALES)
        self.deal_id = self.make_deal(owner_id)

    def _send(self, document_id, phone="+77012223344", code="777111"):
        with patch("turcrm.services.signing_service.generate_code", return_value=code):
            with self.SessionLocal() as db:
                return self.service.send_code(db, document_id, phone)

    def _resend(self, document_id, phone=None, code="888222"):
        with patch("turcrm.services.signing_service.generate_code", return_value=code):
            with self.SessionLocal() as db:
                return self.service.resend_code(db, document_id, phone)

    def _confirm(self, document_id, code):
        with self.SessionLocal() as db:
            return self.service.confirm_code(db, document_id, code)

    def _confirmations(self, document_id):
        with self.SessionLocal() as db:
            rows = (
                db.query(SmsConfirmation)
                .filter(SmsConfirmation.document_id == document_id)
                .order_by(SmsConfirmation.sent_at.asc())
                .all()
            )
            for row in rows:
                db.expunge(row)
            return rows

    def test_send_then_confirm_signs_approved_document(self):
        document_id = self.make_document(self.deal_id, DocumentStatus.APPROVED)
        result = self._send(document_id, code="777111")
        self.assertEqual(result["status"], "sent")
        self.assertFalse(result["resent"])
        self.assertIn("777111", self.send_sms.call_args.kwargs["text"])

        self.assertTrue(self._confirm(document_id, "777111"))
        doc = self.load(Document, document_id)
        self.assertEqual(doc.status, DocumentStatus.SIGNED)
        self.assertIsNotNone(doc.signed_at)
        rows = self._confirmations(document_id)
        self.assertTrue(rows[0].confirmed)
        self.assertIsNotNone(rows[0].confirmed_at)
        self.assertEqual(self.history_for(document_id), [("approved", "signed", "sms")])
        self.assertEqual(len(self.audit_actions(ACTION_SIGNING_CONFIRM)), 1)

    def test_resend_with_live_record_redelivers_same_code(self):
        document_id = self.make_document(self.deal_id, DocumentStatus.APPROVED)
        self._send(document_id, code="777111")
        result = self._resend(document_id, code="000999")

        self.assertTrue(result["resent"])
        self.assertEqual(self.send_sms.call_count, 2)
        second = self.send_sms.call_args.kwargs
        self.assertEqual(second["phone"], "+77012223344")
        self.assertIn("777111", second["text"])
        self.assertEqual(len(self._confirmations(document_id)), 1)

        self.assertTrue(self._confirm(document_id, "777111"))
        self.assertEqual(self.load(Document, document_id).status, DocumentStatus.SIGNED)

    def test_resend_without_live_record_requires_phone(self):
        document_id = self.make_document(self.deal_id, DocumentStatus.APPROVED)
        with self.assertRaises(InvalidInput):
            self._resend(document_id)
        self.send_sms.assert_not_called()

        result = self._resend(document_id, phone="+77015556677", code="314159")
        self.assertFalse(result["resent"])
        rows = self._confirmations(document_id)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].code, "314159")
        self.assertEqual(rows[0].phone, "+77015556677")

    def test_resend_after_expiry_mints_new_code(self):
        document_id = self.make_document(self.deal_id, DocumentStatus.APPROVED)
        self._send(document_id, code="111222")
        with self.SessionLocal() as db:
            row = db.query(SmsConfirmation).filter(SmsConfirmation.document_id == document_id).one()
            row.sent_at = utcnow() - timedelta(minutes=6)
            db.commit()
        with self.assertRaises(InvalidInput):
            self._resend(document_id)
        self._resend(document_id, phone="+77012223344", code="333444")

        self.assertFalse(self._confirm(document_id, "111222"))
        self.assertTrue(self._confirm(document_id, "333444"))

    def test_send_requires_existing_document_and_phone(self):
        with self.assertRaises(NotFound):
            self._send(uuid4())
        document_id = self.make_document(self.deal_id, DocumentStatus.APPROVED)
        with self.assertRaises(InvalidInput):
            self._send(document_id, phone="  ")

    def test_wrong_expired_or_used_codes_soft_fail(self):
        document_id = self.make_document(self.deal_id, DocumentStatus.APPROVED)
        self._send(document_id, code="424242")
        self.assertFalse(self._confirm(document_id, "000000"))
        self.assertFalse(self._confirm(document_id, ""))
        self.assertEqual(self.load(Document, document_id).status, DocumentStatus.APPROVED)

        # No attempt cap: the right code still works after misses.
        self.assertTrue(self._confirm(document_id, "424242"))
        self.assertFalse(self._confirm(document_id, "424242"))

        expired_doc = self.make_document(self.deal_id, DocumentStatus.APPROVED)
        self._send(expired_doc, code="515151")
        with self.SessionLocal() as db:
            row = db.query(SmsConfirmation).filter(SmsConfirmation.document_id == expired_doc).one()
            row.sent_at = utcnow() - timedelta(minutes=5, seconds=1)
            db.commit()
        self.assertFalse(self._confirm(expired_doc, "515151"))
        self.assertEqual(self.load(Document, expired_doc).status, DocumentStatus.APPROVED)

    def test_code_for_other_document_does_not_match(self):
        first = self.make_document(self.deal_id, DocumentStatus.APPROVED)
        second = self.make_document(self.deal_id, DocumentStatus.APPROVED)
        self._send(first, code="606060")
        self.assertFalse(self._confirm(second, "606060"))
        self.assertEqual(self.load(Document, second).status, DocumentStatus.APPROVED)

    def test_under_review_document_follows_configuration(self):
        document_id = self.make_document(self.deal_id, DocumentStatus.UNDER_REVIEW)
        self._send(document_id, code="123123")
        self.assertTrue(self._confirm(document_id, "123123"))
        self.assertEqual(self.load(Document, document_id).status, DocumentStatus.SIGNED)

        self.service = SigningConfirmationService(DocumentFlow(sign_from_under_review=False))
        other_id = self.make_document(self.deal_id, DocumentStatus.UNDER_REVIEW)
        self._send(other_id, code="321321")
        with self.assertRaises(InvalidState):
            self._confirm(other_id, "321321")
        self.assertEqual(self.load(Document, other_id).status, DocumentStatus.UNDER_REVIEW)
        self.assertFalse(self._confirmations(other_id)[0].confirmed)

    def test_confirm_on_draft_rolls_back(self):
        document_id = self.make_document(self.deal_id, DocumentStatus.DRAFT)
        self._send(document_id, code="989898")
        with self.assertRaises(InvalidState):
            self._confirm(document_id, "989898")
        self.assertFalse(self._confirmations(document_id)[0].confirmed)
        self.assertEqual(self.load(Document, document_id).status, DocumentStatus.DRAFT)

    def test_latest_and_delete(self):
        document_id = self.make_document(self.deal_id, DocumentStatus.APPROVED)
        with self.SessionLocal() as db:
            with self.assertRaises(NotFound):
                self.service.latest(db, document_id)
        self._send(document_id, code="100001")
        self._send(document_id, code="200002")
        with self.SessionLocal() as db:
            self.assertEqual(self.service.latest(db, document_id).code, "200002")
            self.assertEqual(self.service.delete_for_document(db, document_id), 2)
        self.assertEqual(self._confirmations(document_id), [])
