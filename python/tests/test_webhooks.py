"""Integration tests for service-to-service webhooks.

- /webhooks/question-builder: signed generation job deliveries
- /webhooks/textract: OCR completion notifications via SNS
"""

import json

import httpx
import respx

from quizmint.db.models import CardSet
from quizmint.schemas.jobs import GenerationJob
from quizmint.services.signature import SIGNATURE_HEADER
from tests.factories import create_test_card_set
from tests.helpers import generation_output, mint_job_signature


def _deliver(client, body: bytes, signature: str | None = None):
    headers = {"Content-Type": "application/json", "Upstash-Message-Id": "msg_test"}
    if signature is not None:
        headers[SIGNATURE_HEADER] = signature
    return client.post("/webhooks/question-builder", content=body, headers=headers)


class TestQuestionBuilderWebhook:
    def test_signed_job_generates_questions(self, client, completion, scheduler, db_session):
        card_set_id = create_test_card_set(db_session, prepared=True)
        completion.queue(generation_output())
        body = GenerationJob(card_set_id=card_set_id).model_dump_json().encode()

        response = _deliver(client, body, mint_job_signature(body))

        assert response.status_code == 200
        assert response.json()["data"] == {"outcome": "ready", "question_count": 3}
        assert scheduler.published == []
        db_session.expire_all()
        assert db_session.get(CardSet, card_set_id).ready_at is not None

        view = client.get(f"/card-sets/{card_set_id}").json()["data"]
        assert view["status"] == "READY"
        assert len(view["questions"]) == 3

    def test_overload_is_rescheduled_not_failed(self, client, completion, scheduler, db_session):
        card_set_id = create_test_card_set(db_session, prepared=True)
        completion.queue(completion.overloaded())
        body = GenerationJob(card_set_id=card_set_id).model_dump_json().encode()

        response = _deliver(client, body, mint_job_signature(body))

        assert response.json()["data"]["outcome"] == "retry_scheduled"
        assert scheduler.pop().job.card_set_id == card_set_id

    def test_invalid_model_output_fails_card_set(self, client, completion, db_session):
        card_set_id = create_test_card_set(db_session, prepared=True)
        completion.queue("not json at all")
        body = GenerationJob(card_set_id=card_set_id).model_dump_json().encode()

        response = _deliver(client, body, mint_job_signature(body))

        assert response.status_code == 200
        assert response.json()["data"]["outcome"] == "failed"
        assert client.get(f"/card-sets/{card_set_id}").json()["data"]["status"] == "ERROR"

    def test_unsigned_delivery_is_rejected(self, client, completion, db_session):
        card_set_id = create_test_card_set(db_session, prepared=True)
        body = GenerationJob(card_set_id=card_set_id).model_dump_json().encode()

        response = _deliver(client, body)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_INVALID_SIGNATURE"
        assert completion.prompts == []

    def test_signature_for_another_body_is_rejected(self, client, db_session):
        card_set_id = create_test_card_set(db_session, prepared=True)
        body = GenerationJob(card_set_id=card_set_id).model_dump_json().encode()

        response = _deliver(client, body, mint_job_signature(b'{"card_set_id": "other"}'))

        assert response.status_code == 400

    def test_signed_garbage_body(self, client):
        body = b'{"unexpected": true}'
        response = _deliver(client, body, mint_job_signature(body))
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_INVALID_REQUEST"


def _ocr_payload(job_id: str, status: str = "SUCCEEDED") -> dict:
    return {
        "JobId": job_id,
        "Status": status,
        "API": "StartDocumentTextDetection",
        "Timestamp": 1_700_000_000_000,
        "DocumentLocation": {"S3ObjectName": "scan-1", "S3Bucket": "test-bucket"},
    }


def _envelope(message_type: str, **fields) -> dict:
    return {
        "Type": message_type,
        "MessageId": "sns-message-1",
        "TopicArn": "arn:aws:sns:us-east-1:123456789012:textract",
        **fields,
    }


def _notify(client, payload: dict):
    return client.post(
        "/webhooks/textract",
        content=json.dumps(payload),
        headers={"Content-Type": "text/plain; charset=UTF-8"},
    )


class TestTextractWebhook:
    def test_successful_job_sets_source_text(self, client, ocr, db_session):
        card_set_id = create_test_card_set(db_session, source_text=None, textract_job_id="job-1")
        ocr.lines["job-1"] = ["Chlorophyll absorbs light.", "Plants release oxygen."]

        response = _notify(
            client, _envelope("Notification", Message=json.dumps(_ocr_payload("job-1")))
        )

        assert response.status_code == 200
        assert response.json()["data"] == {"job_id": "job-1"}
        db_session.expire_all()
        card_set = db_session.get(CardSet, card_set_id)
        assert card_set.source_text == "Chlorophyll absorbs light.\nPlants release oxygen.\n"
        assert card_set.required_tokens == 1
        assert client.get(f"/card-sets/{card_set_id}").json()["data"]["status"] == "WAITING"

    def test_raw_message_delivery(self, client, ocr, db_session):
        card_set_id = create_test_card_set(db_session, source_text=None, textract_job_id="job-2")
        ocr.lines["job-2"] = ["Only line"]

        assert _notify(client, _ocr_payload("job-2")).status_code == 200

        db_session.expire_all()
        assert db_session.get(CardSet, card_set_id).source_text == "Only line\n"

    def test_failed_job_records_error(self, client, ocr, db_session):
        card_set_id = create_test_card_set(db_session, source_text=None, textract_job_id="job-3")
        ocr.messages["job-3"] = "Request has unsupported document format"

        _notify(client, _ocr_payload("job-3", status="FAILED"))

        db_session.expire_all()
        assert db_session.get(CardSet, card_set_id).error == (
            "Error processing PDF file: Request has unsupported document format"
        )

    def test_failed_job_without_message_uses_status(self, client, db_session):
        card_set_id = create_test_card_set(db_session, source_text=None, textract_job_id="job-4")

        _notify(client, _ocr_payload("job-4", status="FAILED"))

        db_session.expire_all()
        assert db_session.get(CardSet, card_set_id).error == "Error processing PDF file: FAILED"

    def test_job_without_text_records_error(self, client, ocr, scheduler, db_session):
        card_set_id = create_test_card_set(db_session, source_text=None, textract_job_id="job-6")
        ocr.lines["job-6"] = []

        assert _notify(client, _ocr_payload("job-6")).status_code == 200

        db_session.expire_all()
        card_set = db_session.get(CardSet, card_set_id)
        assert card_set.source_text is None
        assert card_set.error == "Error processing PDF file: no text was found in the document"
        response = client.post(f"/card-sets/{card_set_id}/prepare")
        assert response.json()["error"]["code"] == "E_CARD_SET_NOT_PREPARABLE"
        assert scheduler.published == []

    def test_duplicate_notification_is_a_noop(self, client, ocr, db_session):
        card_set_id = create_test_card_set(db_session, source_text=None, textract_job_id="job-5")
        ocr.lines["job-5"] = ["First"]
        _notify(client, _ocr_payload("job-5"))
        ocr.lines["job-5"] = ["Changed"]

        assert _notify(client, _ocr_payload("job-5")).status_code == 200

        db_session.expire_all()
        assert db_session.get(CardSet, card_set_id).source_text == "First\n"

    def test_unknown_job_asks_for_redelivery(self, client):
        response = _notify(client, _ocr_payload("job-unknown"))
        assert response.status_code == 500
        assert response.json()["error"]["code"] == "E_INTERNAL"

    def test_subscription_confirmation(self, client):
        url = "https://sns.us-east-1.amazonaws.com/?Action=ConfirmSubscription&Token=abc"
        with respx.mock:
            route = respx.get(url).mock(return_value=httpx.Response(200))
            response = _notify(client, _envelope("SubscriptionConfirmation", SubscribeURL=url))

        assert response.status_code == 200
        assert response.json()["data"] == {"job_id": None}
        assert route.called

    def test_subscription_url_must_be_sns(self, client):
        payload = _envelope("SubscriptionConfirmation", SubscribeURL="https://evil.example.com/")
        assert _notify(client, payload).status_code == 400

    def test_unsubscribe_confirmation_is_ignored(self, client):
        response = _notify(client, _envelope("UnsubscribeConfirmation"))
        assert response.status_code == 200

    def test_malformed_notification(self, client):
        response = client.post("/webhooks/textract", content=b"{not json")
        assert response.status_code == 400
        assert _notify(client, {"JobId": "", "Status": "SUCCEEDED"}).status_code == 400
