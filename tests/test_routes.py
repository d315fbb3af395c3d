"""HTTP tests for the admin pages and the ballot API.

Mirrors the admin flow end to end: signup, login, election CRUD,
launch/end, question and option CRUD, signout.
"""

import pytest

from election_admin.models import ElectionState
from conftest import ADMIN, extract_csrf_token


def delete(client, url, token):
    return client.request("DELETE", url, json={"_csrf": token})


class TestAuthentication:
    """Signup, login, signout and page gating."""

    def test_home_redirects_when_logged_out(self, client):
        response = client.get("/home")

        assert response.status_code == 302
        assert response.headers["location"] == "/login"

    def test_auth_pages_render(self, client):
        assert client.get("/signup").status_code == 200
        login = client.get("/login")
        assert login.status_code == 200
        assert extract_csrf_token(login)

    def test_signup_logs_in(self, client, signup):
        response = signup(client)

        assert response.status_code == 302
        assert response.headers["location"] == "/home"
        assert client.get("/home").status_code == 200

    def test_signup_without_csrf_is_rejected(self, client):
        response = client.post("/users", json=ADMIN)

        assert response.status_code == 302
        assert response.headers["location"] == "/signup"
        assert client.get("/home").status_code == 302

    def test_signout_then_login(self, admin_client):
        response = admin_client.get("/signout")
        assert response.status_code == 302
        assert admin_client.get("/home").status_code == 302

        token = extract_csrf_token(admin_client.get("/login"))
        response = admin_client.post(
            "/session",
            json={"email": ADMIN["email"], "password": ADMIN["password"], "_csrf": token}
        )

        assert response.status_code == 302
        assert response.headers["location"] == "/home"
        assert admin_client.get("/home").status_code == 200

    def test_login_with_wrong_password(self, admin_client):
        admin_client.get("/signout")
        token = extract_csrf_token(admin_client.get("/login"))

        response = admin_client.post(
            "/session",
            data={"email": ADMIN["email"], "password": "wrong-password", "_csrf": token}
        )

        assert response.status_code == 302
        assert response.headers["location"] == "/login"
        page = admin_client.get("/login")
        assert "Invalid email or password" in page.text

    def test_json_routes_require_login(self, client):
        assert client.get("/election").status_code == 302
        response = client.put("/election/1/end", json={})
        assert response.status_code == 401
        assert response.json()["error"] == "AuthenticationError"


class TestElectionRoutes:
    """Election create, rename, launch, end, delete."""

    def test_creating_election(self, admin_client, csrf_token):
        count = len(admin_client.get("/election").json()["elections"])

        response = admin_client.post("/election", json={"name": "Election-22", "_csrf": csrf_token})

        assert response.status_code == 302
        elections = admin_client.get("/election").json()["elections"]
        assert len(elections) == count + 1
        assert elections[-1]["name"] == "Election-22"
        assert elections[-1]["state"] == "draft"

    def test_creating_election_from_form(self, admin_client, csrf_token):
        response = admin_client.post("/election", data={"name": "Form election", "_csrf": csrf_token})

        assert response.status_code == 302
        assert admin_client.get("/election").json()["elections"][-1]["name"] == "Form election"

    def test_empty_name_flashes_error(self, admin_client, csrf_token):
        response = admin_client.post("/election", json={"name": "  ", "_csrf": csrf_token})

        assert response.status_code == 302
        assert response.headers["location"] == "/elections/new"
        assert admin_client.get("/election").json()["elections"] == []
        assert "Name cannot be empty" in admin_client.get("/elections/new").text

    def test_missing_csrf_creates_nothing(self, admin_client):
        response = admin_client.post("/election", json={"name": "No token"})

        assert response.status_code == 302
        assert admin_client.get("/election").json()["elections"] == []

    def test_election_detail(self, admin_client, create_election):
        election_id = create_election()

        data = admin_client.get(f"/election/{election_id}").json()
        assert data["id"] == election_id
        assert data["questions"] == []

        page = admin_client.get(f"/election/{election_id}", headers={"Accept": "text/html"})
        assert page.status_code == 200
        assert "Election-22" in page.text
        assert extract_csrf_token(page)
        assert "?_csrf=" not in page.text
        assert f"sendJson('PUT', '/election/{election_id}/launch')" in page.text

    def test_launch_and_end_election(self, admin_client, csrf_token, create_election):
        election_id = create_election("test election launch")

        result = admin_client.get(f"/election/{election_id}/launch", params={"_csrf": csrf_token})
        assert result.status_code == 302
        assert admin_client.get(f"/election/{election_id}").json()["state"] == "launched"

        result = admin_client.put(f"/election/{election_id}/end", json={"_csrf": csrf_token})
        assert result.status_code == 200
        assert result.json()["election"]["state"] == ElectionState.ENDED.value

        again = admin_client.put(f"/election/{election_id}/end", json={"_csrf": csrf_token})
        assert again.status_code == 409
        assert again.json()["error"] == "InvalidStateError"

    def test_launch_link_with_token_in_body(self, admin_client, create_election):
        election_id = create_election()
        token = admin_client.get(f"/election/{election_id}").json()["_csrf"]

        result = admin_client.request("GET", f"/election/{election_id}/launch", json={"_csrf": token})
        assert result.status_code == 302

        ended = admin_client.put(f"/election/{election_id}/end", json={"_csrf": token})
        assert ended.status_code == 200
        assert ended.json()["election"]["state"] == "ended"

    def test_detail_json_carries_csrf_token(self, admin_client, csrf_token, create_election):
        election_id = create_election()

        detail = admin_client.get(f"/election/{election_id}", headers={"Accept": "*/*"})

        assert detail.headers["content-type"].startswith("application/json")
        assert detail.json()["_csrf"] == csrf_token

    def test_end_before_launch(self, admin_client, csrf_token, create_election):
        election_id = create_election()

        result = admin_client.put(f"/election/{election_id}/end", json={"_csrf": csrf_token})

        assert result.status_code == 409
        assert result.json()["details"]["state"] == "draft"

    def test_launch_via_put_and_relaunch_rejected(self, admin_client, csrf_token, create_election):
        election_id = create_election()

        first = admin_client.put(
            f"/election/{election_id}/launch",
            headers={"X-CSRF-Token": csrf_token}
        )
        assert first.status_code == 200

        second = admin_client.get(f"/election/{election_id}/launch", params={"_csrf": csrf_token})
        assert second.status_code == 302
        assert second.headers["location"] == f"/election/{election_id}"

    def test_launch_link_requires_csrf(self, admin_client, create_election):
        election_id = create_election()

        admin_client.get(f"/election/{election_id}/launch")

        assert admin_client.get(f"/election/{election_id}").json()["state"] == "draft"

    def test_delete_election(self, admin_client, csrf_token, create_election):
        election_id = create_election()

        res = delete(admin_client, f"/election/{election_id}", csrf_token)

        assert res.status_code == 200
        assert res.json()["success"] is True
        assert admin_client.get(f"/election/{election_id}").status_code == 404

    def test_delete_without_csrf(self, admin_client, create_election):
        election_id = create_election()

        res = admin_client.request("DELETE", f"/election/{election_id}")

        assert res.status_code == 403
        assert res.json()["error"] == "CSRFError"

    def test_edit_election(self, admin_client, csrf_token, create_election):
        election_id = create_election("update election")

        res = admin_client.post(f"/election/{election_id}", json={"name": "Election 1", "_csrf": csrf_token})

        assert res.status_code == 302
        assert admin_client.get("/election").json()["elections"][-1]["name"] == "Election 1"

    def test_other_admin_cannot_see_election(self, app, admin_client, create_election, signup):
        from fastapi.testclient import TestClient

        election_id = create_election()

        with TestClient(app, follow_redirects=False) as other:
            signup(other, email="other@user.com")
            assert other.get("/election").json()["elections"] == []
            res = other.get(f"/election/{election_id}")
            assert res.status_code == 403
            assert res.json()["error"] == "OwnershipError"


class TestQuestionAndOptionRoutes:
    """Question and option CRUD scoped under an election."""

    @pytest.fixture
    def election_id(self, create_election):
        return create_election()

    def add_question(self, client, election_id, token, title="Question 1"):
        return client.post(
            f"/election/{election_id}/questions/add",
            json={"title": title, "description": "This is description", "_csrf": token}
        )

    def test_add_question(self, admin_client, csrf_token, election_id):
        result = self.add_question(admin_client, election_id, csrf_token)

        assert result.status_code == 302
        questions = admin_client.get(f"/election/{election_id}/questions").json()
        assert len(questions) == 1
        assert questions[0]["title"] == "Question 1"

    def test_edit_question(self, admin_client, csrf_token, election_id):
        self.add_question(admin_client, election_id, csrf_token)
        question_id = admin_client.get(f"/election/{election_id}/questions").json()[0]["id"]

        page = admin_client.get(f"/election/{election_id}/question/{question_id}/edit")
        assert page.status_code == 200

        result = admin_client.post(
            f"/election/{election_id}/question/{question_id}/update",
            json={
                "title": "Question 1",
                "description": "This is edited description",
                "_csrf": extract_csrf_token(page),
            }
        )

        assert result.status_code == 302
        question = admin_client.get(f"/election/{election_id}/question/{question_id}").json()
        assert question["description"] == "This is edited description"

    def test_delete_question(self, admin_client, csrf_token, election_id):
        self.add_question(admin_client, election_id, csrf_token, "Question 1")
        self.add_question(admin_client, election_id, csrf_token, "Question 3")
        questions = admin_client.get(f"/election/{election_id}/questions").json()

        result = delete(admin_client, f"/election/{election_id}/question/{questions[0]['id']}", csrf_token)

        assert result.status_code == 200
        remaining = admin_client.get(f"/election/{election_id}/questions").json()
        assert len(remaining) == len(questions) - 1
        assert remaining[0]["title"] == "Question 3"

    def test_options_crud(self, admin_client, csrf_token, election_id):
        self.add_question(admin_client, election_id, csrf_token)
        question_id = admin_client.get(f"/election/{election_id}/questions").json()[0]["id"]
        base = f"/election/{election_id}/question/{question_id}"

        for _ in range(2):
            result = admin_client.post(f"{base}/options/add", json={"option": "Option 1", "_csrf": csrf_token})
            assert result.status_code == 302

        options = admin_client.get(f"{base}/options").json()
        assert [o["value"] for o in options] == ["Option 1", "Option 1"]

        option_id = options[-1]["id"]
        edit_page = admin_client.get(f"{base}/option/{option_id}/edit")
        assert edit_page.status_code == 200
        update = admin_client.post(
            f"{base}/option/{option_id}/update",
            json={"value": "Edited New Option 1", "_csrf": extract_csrf_token(edit_page)}
        )
        assert update.status_code == 302
        assert admin_client.get(f"{base}/options").json()[-1]["value"] == "Edited New Option 1"

        result = delete(admin_client, f"{base}/option/1", csrf_token)
        assert result.status_code == 200
        assert [o["id"] for o in admin_client.get(f"{base}/options").json()] == [option_id]

    def test_delete_unknown_option(self, admin_client, csrf_token, election_id):
        self.add_question(admin_client, election_id, csrf_token)

        result = delete(admin_client, f"/election/{election_id}/question/1/option/9", csrf_token)

        assert result.status_code == 404

    def test_structure_frozen_after_launch(self, admin_client, csrf_token, election_id):
        self.add_question(admin_client, election_id, csrf_token)
        admin_client.get(f"/election/{election_id}/launch", params={"_csrf": csrf_token})

        result = self.add_question(admin_client, election_id, csrf_token, "Too late")

        assert result.status_code == 302
        assert len(admin_client.get(f"/election/{election_id}/questions").json()) == 1
        page = admin_client.get(f"/election/{election_id}", headers={"Accept": "text/html"})
        assert "Cannot add a question" in page.text

        deleted = delete(admin_client, f"/election/{election_id}/question/1", csrf_token)
        assert deleted.status_code == 409


class TestBallotApi:
    """Public ballot endpoint and owner results."""

    @pytest.fixture
    def launched_id(self, admin_client, csrf_token, create_election):
        election_id = create_election("Ballot election")
        admin_client.post(
            f"/election/{election_id}/questions/add",
            json={"title": "Chair", "description": "", "_csrf": csrf_token}
        )
        for value in ("Alice", "Bob"):
            admin_client.post(
                f"/election/{election_id}/question/1/options/add",
                json={"option": value, "_csrf": csrf_token}
            )
        admin_client.get(f"/election/{election_id}/launch", params={"_csrf": csrf_token})
        return election_id

    def test_cast_ballot_and_results(self, admin_client, launched_id):
        url = f"/api/v1/elections/{launched_id}/ballots"

        first = admin_client.post(url, json={"voter_key": "V-1", "selections": {"1": 2}})
        assert first.status_code == 202
        assert first.json()["status"] == "accepted"

        duplicate = admin_client.post(url, json={"voter_key": "V-1", "selections": {"1": 1}})
        assert duplicate.status_code == 409
        assert duplicate.json()["error"] == "DuplicateBallotError"

        results = admin_client.get(f"/election/{launched_id}/results").json()
        assert results["total_ballots"] == 1
        assert [o["votes"] for o in results["questions"][0]["options"]] == [0, 1]

    def test_ballot_for_draft_election(self, admin_client, create_election):
        election_id = create_election()

        res = admin_client.post(
            f"/api/v1/elections/{election_id}/ballots",
            json={"voter_key": "V-1", "selections": {}}
        )

        assert res.status_code == 409

    def test_ballot_with_blank_voter_key(self, admin_client, launched_id):
        res = admin_client.post(
            f"/api/v1/elections/{launched_id}/ballots",
            json={"voter_key": "   ", "selections": {"1": 1}}
        )

        assert res.status_code == 422
        assert res.json()["error"] == "ValidationError"
        assert "voter_key" in res.json()["details"]["fields"]

    def test_ballot_with_missing_selections(self, admin_client, launched_id):
        res = admin_client.post(f"/api/v1/elections/{launched_id}/ballots", json={"voter_key": "V"})

        assert res.status_code == 422
        assert res.json()["error"] == "ValidationError"
        assert "selections" in res.json()["details"]["fields"]

    def test_ballot_for_unknown_election(self, client):
        res = client.post("/api/v1/elections/404/ballots", json={"voter_key": "V", "selections": {}})

        assert res.status_code == 404


class TestServiceEndpoints:
    """Health and metrics."""

    def test_health(self, client):
        res = client.get("/api/v1/health")

        assert res.status_code == 200
        assert res.json()["status"] == "healthy"
        assert res.json()["services"]["storage"] == "connected"

    def test_metrics(self, admin_client, create_election):
        create_election()

        res = admin_client.get("/metrics")

        assert res.status_code == 200
        assert "election_lifecycle_operations_total" in res.text
