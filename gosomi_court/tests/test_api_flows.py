"""
API Flow Tests
==============

End-to-end flows through the HTTP layer with a fake judge:

- File -> defend -> verdict -> penalty
- Appeal -> response -> appeal verdict
- Summons tokens and expiry
- Jury invitation and voting
- Error bodies, notifications, stats
"""

from datetime import datetime, timedelta

import pytest

from gosomi_court.llm import JudgeCallResult

from conftest import verdict_payload


def _file_case(client, prefix="", **overrides):
    body = {
        "title": "Late again",
        "content": "He showed up forty minutes late to dinner",
        "plaintiffId": 1,
        "defendantId": 2,
        "evidences": [{"type": "text", "content": "Chat log: 'on my way' at 7:05"}],
    }
    body.update(overrides)
    response = client.post(f"{prefix}/cases", json=body)
    assert response.status_code == 201, response.text
    return response.json()["caseId"]


def _decided_case(client):
    case_id = _file_case(client)
    client.post(f"/cases/{case_id}/defense", json={"content": "I was late because of traffic"})
    response = client.post(f"/cases/{case_id}/verdict")
    assert response.status_code == 200, response.text
    return case_id


def _expire_summons(case_id):
    from gosomi_court.db.models import Summons
    from gosomi_court.db.session import SessionLocal

    db = SessionLocal()
    try:
        summons = db.query(Summons).filter(Summons.case_id == case_id).one()
        summons.expires_at = datetime.utcnow() - timedelta(minutes=1)
        db.commit()
    finally:
        db.close()


# =============================================================================
# Happy path
# =============================================================================

class TestVerdictFlow:

    def test_full_first_instance(self, client, users, fake_judge):
        created = client.post("/cases", json={
            "title": "Late again",
            "content": "He showed up forty minutes late to dinner",
            "plaintiffId": 1,
            "defendantId": 2,
        })
        assert created.status_code == 201
        body = created.json()
        assert body["ok"] is True
        assert body["status"] == "SUMMONED"
        assert body["caseNumber"].endswith("-GOSOMI-001")
        case_id = body["caseId"]

        defense = client.post(f"/cases/{case_id}/defense", json={"content": "I was late because of traffic"})
        assert defense.status_code == 200
        assert defense.json() == {"ok": True, "caseId": case_id}

        verdict = client.post(f"/cases/{case_id}/verdict")
        assert verdict.status_code == 200
        data = verdict.json()
        assert data["cached"] is False
        assert data["faultRatio"] == {"plaintiff": 30, "defendant": 70}
        assert data["verdict"]["result"] == "GUILTY"
        assert data["verdictText"].startswith("The defendant is guilty")
        assert "I was late because of traffic" in fake_judge.calls[0]["prompt"]

        penalty = client.post(f"/cases/{case_id}/penalty", json={"choice": "SERIOUS"})
        assert penalty.status_code == 200
        serious = verdict_payload()["penalties"]["serious"]
        assert penalty.json()["penaltySelected"] == serious[case_id % len(serious)]
        assert penalty.json()["cached"] is False

        detail = client.get(f"/cases/{case_id}").json()
        assert detail["status"] == "COMPLETED"
        assert detail["penaltyChoice"] == "SERIOUS"
        assert detail["penaltyMode"] is True
        assert detail["displayStatus"] == "Verdict delivered"

    def test_verdict_is_cached(self, client, users, fake_judge):
        case_id = _decided_case(client)

        again = client.post(f"/cases/{case_id}/verdict")
        assert again.status_code == 200
        assert again.json()["cached"] is True
        assert len(fake_judge.calls) == 1

    def test_penalty_repeat_and_lock(self, client, users):
        case_id = _decided_case(client)

        first = client.post(f"/cases/{case_id}/penalty", json={"choice": "serious"})
        repeat = client.post(f"/cases/{case_id}/penalty", json={"choice": "SERIOUS"})
        assert repeat.status_code == 200
        assert repeat.json()["cached"] is True
        assert repeat.json()["penaltySelected"] == first.json()["penaltySelected"]

        locked = client.post(f"/cases/{case_id}/penalty", json={"choice": "FUNNY"})
        assert locked.status_code == 409
        assert locked.json() == {
            "error": "penalty already selected",
            "lockedChoice": "SERIOUS",
            "penaltySelected": first.json()["penaltySelected"],
        }

    def test_penalty_before_verdict(self, client, users):
        case_id = _file_case(client)
        response = client.post(f"/cases/{case_id}/penalty", json={"choice": "FUNNY"})
        assert response.status_code == 400
        assert response.json()["error"] == "verdict not ready"

    def test_judge_failure_is_500(self, client, users, fake_judge):
        case_id = _file_case(client)
        client.post(f"/cases/{case_id}/defense", json={"content": "Traffic"})
        fake_judge.responses.append(
            JudgeCallResult(content="", model="fake", success=False, error="HTTP 503: overloaded")
        )

        response = client.post(f"/cases/{case_id}/verdict")
        assert response.status_code == 500
        assert "overloaded" in response.json()["error"]

        detail = client.get(f"/cases/{case_id}").json()
        assert detail["status"] == "DEFENSE_SUBMITTED"
        assert detail["verdictText"] is None

    def test_malformed_verdict_is_500(self, client, users, fake_judge):
        case_id = _file_case(client)
        client.post(f"/cases/{case_id}/defense", json={"content": "Traffic"})
        fake_judge.responses.append("I refuse to answer in JSON")

        response = client.post(f"/cases/{case_id}/verdict")
        assert response.status_code == 500
        assert response.json()["error"].startswith("judge returned non-JSON")

    def test_api_prefix(self, client, users):
        case_id = _file_case(client, prefix="/api")

        assert client.get(f"/api/cases/{case_id}").status_code == 200
        assert client.get(f"/cases/{case_id}").json()["id"] == case_id
        assert client.get("/api/health").json()["status"] == "healthy"


# =============================================================================
# Appeal
# =============================================================================

class TestAppealFlow:

    def test_appeal_to_final_verdict(self, client, users, fake_judge):
        case_id = _decided_case(client)
        client.post(f"/cases/{case_id}/penalty", json={"choice": "SERIOUS"})

        appeal = client.post(f"/cases/{case_id}/appeal", json={"appellantId": 2, "reason": "new evidence found"})
        assert appeal.status_code == 200
        assert appeal.json()["status"] == "REQUESTED"

        evidence = client.post(f"/cases/{case_id}/evidence", json={
            "submittedBy": "DEFENDANT", "stage": "APPEAL", "content": "Traffic report for that evening",
        })
        assert evidence.status_code == 201

        response = client.post(f"/cases/{case_id}/appeal/defense", json={"content": "I disagree"})
        assert response.status_code == 200
        assert response.json()["status"] == "RESPONDED"

        fake_judge.responses.append(verdict_payload(
            result="BOTH_AT_FAULT",
            faultRatio={"plaintiff": 50, "defendant": 50},
            penalties={"serious": [], "funny": []},
        ))
        final = client.post(f"/cases/{case_id}/appeal/verdict")
        assert final.status_code == 200
        assert final.json()["verdict"]["result"] == "BOTH_AT_FAULT"

        prompt = fake_judge.calls[-1]["prompt"]
        assert "- Reason: new evidence found" in prompt
        assert "- Response: I disagree" in prompt
        assert "Traffic report for that evening" in prompt

        detail = client.get(f"/cases/{case_id}").json()
        assert detail["status"] == "COMPLETED"
        assert detail["appealStatus"] == "DONE"
        assert detail["displayStatus"] == "Retrial complete"
        assert detail["faultRatio"] == {"plaintiff": 50, "defendant": 50}

    def test_appeal_guards(self, client, users):
        case_id = _file_case(client)

        early = client.post(f"/cases/{case_id}/appeal", json={"appellantId": 1, "reason": "unfair"})
        assert early.status_code == 400

        client.post(f"/cases/{case_id}/defense", json={"content": "Traffic"})
        client.post(f"/cases/{case_id}/verdict")

        outsider = client.post(f"/cases/{case_id}/appeal", json={"appellantId": 5, "reason": "unfair"})
        assert outsider.status_code == 403

        missing = client.post(f"/cases/{case_id}/appeal", json={"appellantId": 1})
        assert missing.status_code == 400

        assert client.post(f"/cases/{case_id}/appeal", json={"appellantId": 1, "reason": "unfair"}).status_code == 200
        twice = client.post(f"/cases/{case_id}/appeal", json={"appellantId": 2, "reason": "me too"})
        assert twice.status_code == 400

    def test_appeal_verdict_requires_open_appeal(self, client, users):
        case_id = _decided_case(client)
        response = client.post(f"/cases/{case_id}/appeal/verdict")
        assert response.status_code == 400


# =============================================================================
# Summons
# =============================================================================

class TestSummonsFlow:

    def test_defense_by_token(self, client, users):
        case_id = _file_case(client)

        issued = client.post(f"/cases/{case_id}/summon")
        assert issued.status_code == 201
        token = issued.json()["token"]
        assert issued.json()["created"] is True

        again = client.post(f"/cases/{case_id}/summon").json()
        assert again["token"] == token
        assert again["created"] is False

        evidence = client.post(f"/summons/{token}/evidence", json={
            "submittedBy": "PLAINTIFF", "content": "Bus timetable",
        })
        assert evidence.status_code == 201
        assert evidence.json()["evidence"]["submittedBy"] == "DEFENDANT"

        defense = client.post(f"/summons/{token}/defense", json={"content": "The bus never came"})
        assert defense.status_code == 201

        detail = client.get(f"/cases/{case_id}").json()
        assert detail["status"] == "DEFENSE_SUBMITTED"
        assert detail["defendantResponse"]["statement"] == "The bus never came"
        assert [e["content"] for e in detail["defendantEvidences"]] == ["Bus timetable"]

    def test_unknown_token(self, client, users):
        response = client.post("/summons/not-a-token/defense", json={"content": "hi"})
        assert response.status_code == 404
        assert response.json() == {"error": "invalid token"}

    def test_expired_token(self, client, users):
        case_id = _file_case(client)
        token = client.post(f"/cases/{case_id}/summon").json()["token"]
        _expire_summons(case_id)

        response = client.post(f"/summons/{token}/defense", json={"content": "Sorry I'm late"})
        assert response.status_code == 410
        assert response.json() == {"error": "summon expired"}

        assert client.get(f"/cases/{case_id}").json()["status"] == "EXPIRED"
        assert client.post(f"/cases/{case_id}/verdict").status_code == 409
        assert client.post(f"/cases/{case_id}/evidence", json={"content": "late"}).status_code == 409


# =============================================================================
# Jury
# =============================================================================

class TestJuryFlow:

    def test_invite_vote_and_tally(self, client, users, fake_judge):
        case_id = _file_case(client, juryEnabled=True, juryMode="INVITE", juryInvitedUserIds=[3, 4, 1])

        open_cases = client.get("/jury/cases", params={"userId": 3}).json()["data"]
        assert [c["id"] for c in open_cases] == [case_id]
        assert open_cases[0]["juryStatus"] == "INVITED"

        vote = client.post(f"/cases/{case_id}/jury/vote", json={"userId": 3, "vote": "DEFENDANT"})
        assert vote.status_code == 200

        duplicate = client.post(f"/cases/{case_id}/jury/vote", json={"userId": 3, "vote": "PLAINTIFF"})
        assert duplicate.status_code == 409

        outsider = client.post(f"/cases/{case_id}/jury/vote", json={"userId": 6, "vote": "PLAINTIFF"})
        assert outsider.status_code == 403

        bad_vote = client.post(f"/cases/{case_id}/jury/vote", json={"userId": 4, "vote": "NEITHER"})
        assert bad_vote.status_code == 400

        detail = client.get(f"/cases/{case_id}", params={"userId": 3}).json()
        assert detail["juryVotes"] == {"plaintiffWins": 0, "defendantWins": 1, "total": 1, "totalJurors": 2}
        assert detail["userVote"] == {"isJuror": True, "hasVoted": True, "vote": "DEFENDANT"}
        assert detail["juryInviteToken"]

        client.post(f"/cases/{case_id}/defense", json={"content": "Traffic"})
        client.post(f"/cases/{case_id}/verdict")
        assert "- Defendant at fault: 1" in fake_judge.calls[0]["prompt"]

    def test_jury_cases_requires_user(self, client, users):
        response = client.get("/jury/cases")
        assert response.status_code == 400


# =============================================================================
# Errors and reads
# =============================================================================

class TestErrorsAndReads:

    def test_missing_fields(self, client, users):
        response = client.post("/cases", json={"title": "Only a title"})
        assert response.status_code == 400
        assert "required" in response.json()["error"]

    def test_wrong_types(self, client, users):
        response = client.post("/cases", json={"title": "x", "content": "y", "plaintiffId": "abc", "defendantId": 2})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid request"

    def test_case_not_found(self, client, users):
        response = client.get("/cases/999")
        assert response.status_code == 404
        assert response.json() == {"error": "case not found", "caseId": 999}

    def test_duplicate_defense(self, client, users):
        case_id = _file_case(client)
        client.post(f"/cases/{case_id}/defense", json={"content": "Traffic"})
        response = client.post(f"/cases/{case_id}/defense", json={"content": "Traffic again"})
        assert response.status_code == 409
        assert response.json() == {"error": "defense already submitted"}

    def test_evidence_round_trip(self, client, users):
        case_id = _file_case(client, evidences=[])
        response = client.post(f"/cases/{case_id}/evidence", json={
            "submittedBy": "PLAINTIFF", "type": "image", "content": "uploads/receipt.png", "mimeType": "image/png",
        })
        assert response.status_code == 201

        detail = client.get(f"/cases/{case_id}").json()
        assert detail["evidences"] == [{
            **response.json()["evidence"],
            "createdAt": detail["evidences"][0]["createdAt"],
        }]
        assert detail["evidences"][0]["stage"] == "INITIAL"
        assert detail["evidences"][0]["mimeType"] == "image/png"

    def test_image_outside_upload_root_rejected(self, client, users):
        case_id = _file_case(client, evidences=[])
        response = client.post(f"/cases/{case_id}/evidence", json={
            "type": "image", "content": "/etc/passwd", "mimeType": "image/png",
        })
        assert response.status_code == 400
        assert response.json() == {"error": "image path must be relative to the upload root"}
        assert client.get(f"/cases/{case_id}").json()["evidences"] == []

    def test_list_search_and_stats(self, client, users):
        first = _file_case(client)
        second = _file_case(client, title="Ate my pizza", plaintiffId=3, defendantId=4)

        data = client.get("/cases").json()["data"]
        assert [c["id"] for c in data] == [second, first]

        by_name = client.get("/cases", params={"q": "bob"}).json()["data"]
        assert [c["id"] for c in by_name] == [first]

        by_user = client.get("/cases", params={"userId": 3}).json()["data"]
        assert [c["id"] for c in by_user] == [second]

        assert client.get("/cases", params={"status": "BOGUS"}).status_code == 400

        stats = client.get("/cases/stats").json()["stats"]
        assert stats == {"total": 2, "todayVerdict": 0, "ongoing": 2}

    def test_notifications(self, client, users):
        case_id = _decided_case(client)

        notes = client.get("/notifications", params={"userId": 2}).json()["data"]
        assert [n["type"] for n in notes] == ["VERDICT_COMPLETED", "SUMMON"]
        assert notes[0]["link"] == f"/case/{case_id}/verdict"
        assert notes[1]["link"] == f"/case/{case_id}"
        assert notes[0]["read"] is False

        assert client.post(f"/notifications/{notes[0]['id']}/read").json() == {"ok": True}
        notes = client.get("/notifications", params={"userId": 2}).json()["data"]
        assert notes[0]["read"] is True

        assert client.get("/notifications").status_code == 400

    def test_user_stats(self, client, users):
        case_id = _decided_case(client)

        before = client.get("/users/1/stats").json()["stats"]
        assert before["total"] == 0
        assert before["winRate"] == 50.0

        client.post(f"/cases/{case_id}/penalty", json={"choice": "FUNNY"})

        plaintiff = client.get("/users/1/stats").json()["stats"]
        defendant = client.get("/users/2/stats").json()["stats"]
        assert (plaintiff["wins"], plaintiff["winRate"]) == (1, 100.0)
        assert (defendant["losses"], defendant["winRate"]) == (1, 0.0)

        assert client.get("/users/999/stats").status_code == 404

    @pytest.mark.parametrize("path", ["/health", "/api/health"])
    def test_health(self, client, path):
        response = client.get(path)
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
