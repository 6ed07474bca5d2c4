"""Integration tests for submissions and scoring."""

from datetime import timedelta
from uuid import uuid4

from quizmint.db.models import utcnow
from tests.factories import create_test_card_set, create_test_questions, option_ids
from tests.helpers import sign_in


def _submit(client, card_set_id, options):
    return client.post(
        f"/card-sets/{card_set_id}/submissions",
        json={"answers": [{"option_id": str(option_id)} for option_id in options]},
    )


class TestCreateSubmission:
    def test_scores_against_correct_options(self, client, db_session):
        card_set_id = create_test_card_set(db_session, ready=True)
        first, second, third = create_test_questions(db_session, card_set_id)

        response = _submit(
            client,
            card_set_id,
            [option_ids(first)[1], option_ids(second)[2], option_ids(third)[2]],
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["score"] == 2
        assert data["submission_id"] is not None
        answers = [q["answer"] for q in data["questions"]]
        assert answers[0] == {
            "user_choice": str(option_ids(first)[1]),
            "correct_choice": str(option_ids(first)[1]),
        }
        assert answers[1]["user_choice"] == str(option_ids(second)[2])
        assert answers[1]["correct_choice"] == str(option_ids(second)[0])

    def test_unanswered_questions_have_no_choice(self, client, db_session):
        card_set_id = create_test_card_set(db_session, ready=True)
        first, second, _ = create_test_questions(db_session, card_set_id)

        data = _submit(client, card_set_id, [option_ids(first)[1]]).json()["data"]

        assert data["score"] == 1
        assert data["questions"][1]["answer"]["user_choice"] is None

    def test_first_option_counts_when_none_is_flagged(self, client, db_session):
        card_set_id = create_test_card_set(db_session, ready=True)
        (question,) = create_test_questions(
            db_session, card_set_id, [("Pick one", ["a", "b"], None)]
        )

        data = _submit(client, card_set_id, [option_ids(question)[0]]).json()["data"]

        assert data["score"] == 1

    def test_option_from_another_card_set(self, client, db_session):
        card_set_id = create_test_card_set(db_session, ready=True)
        create_test_questions(db_session, card_set_id)
        other_id = create_test_card_set(db_session, ready=True)
        (foreign,) = create_test_questions(db_session, other_id, [("Other", ["x", "y"], 0)])
        stray = option_ids(foreign)[0]

        response = _submit(client, card_set_id, [stray])

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "E_INVALID_OPTION"
        assert error["message"] == f"Invalid options id provided: {stray}"

    def test_unknown_card_set(self, client):
        assert _submit(client, uuid4(), [uuid4()]).status_code == 404

    def test_empty_answers_rejected(self, client, db_session):
        card_set_id = create_test_card_set(db_session, ready=True)
        response = client.post(f"/card-sets/{card_set_id}/submissions", json={"answers": []})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "E_INVALID_REQUEST"


class TestSubmissionLookup:
    def test_latest_submission_of_signed_in_viewer(self, client, identity_provider, db_session):
        card_set_id = create_test_card_set(db_session, ready=True)
        first, _, _ = create_test_questions(db_session, card_set_id)
        sign_in(client, identity_provider, "uid-student")

        _submit(client, card_set_id, [option_ids(first)[0]])
        latest = _submit(client, card_set_id, [option_ids(first)[1]]).json()["data"]

        data = client.get(f"/card-sets/{card_set_id}").json()["data"]
        assert data["submission_id"] == latest["submission_id"]
        assert data["score"] == 1

    def test_anonymous_reader_sees_no_submission_by_default(self, client, db_session):
        card_set_id = create_test_card_set(db_session, ready=True)
        first, _, _ = create_test_questions(db_session, card_set_id)
        submitted = _submit(client, card_set_id, [option_ids(first)[1]]).json()["data"]

        data = client.get(f"/card-sets/{card_set_id}").json()["data"]
        assert data["submission_id"] is None
        assert data["score"] is None

        shared = client.get(
            f"/card-sets/{card_set_id}", params={"submission_id": submitted["submission_id"]}
        ).json()["data"]
        assert shared["score"] == 1

    def test_questions_ordered_by_batch_then_index(self, client, db_session):
        card_set_id = create_test_card_set(db_session, ready=True)
        later = utcnow()
        create_test_questions(
            db_session, card_set_id, [("Second batch", ["a", "b"], 0)], created_at=later
        )
        create_test_questions(
            db_session,
            card_set_id,
            [("First batch 0", ["a", "b"], 0), ("First batch 1", ["a", "b"], 1)],
            created_at=later - timedelta(minutes=1),
        )

        data = client.get(f"/card-sets/{card_set_id}").json()["data"]

        assert [q["text"] for q in data["questions"]] == [
            "First batch 0",
            "First batch 1",
            "Second batch",
        ]
