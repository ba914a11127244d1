from bson import ObjectId

from conftest import auth_header

NEW_REQUEST = {
    "recipient_name": "Rahim",
    "recipient_district": "Dhaka",
    "recipient_upazila": "Savar",
    "hospital_name": "DMCH",
    "full_address": "Road 1",
    "blood_group": "B+",
    "donation_date": "2024-03-01",
    "donation_time": "09:30",
    "request_message": "Urgent",
}


def test_create_request_stamps_requester(client, db, make_user):
    make_user("req@x.com", name="Requester")
    res = client.post("/requests", json=NEW_REQUEST, headers=auth_header("req@x.com"))

    assert res.status_code == 200
    doc = db["request"].find_one({"_id": ObjectId(res.json()["insertedId"])})
    assert doc["requester_email"] == "req@x.com"
    assert doc["requester_name"] == "Requester"
    assert doc["donation_status"] == "pending"
    assert doc["createdAt"] is not None


def test_create_request_missing_field(client, db, make_user):
    make_user("req@x.com")
    body = dict(NEW_REQUEST)
    del body["hospital_name"]
    res = client.post("/requests", json=body, headers=auth_header("req@x.com"))

    assert res.status_code == 400
    assert db["request"].count_documents({}) == 0


def test_blocked_user_cannot_create_request(client, db, make_user):
    make_user("req@x.com", status="blocked")
    res = client.post("/requests", json=NEW_REQUEST, headers=auth_header("req@x.com"))

    assert res.status_code == 403
    assert db["request"].count_documents({}) == 0


def test_all_requests_second_page(client, volunteer, make_request):
    made = [make_request() for _ in range(12)]
    newest_first = list(reversed(made))

    res = client.get("/all-requests?page=1&size=5", headers=volunteer)

    assert res.status_code == 200
    body = res.json()
    assert [r["_id"] for r in body["requests"]] == [str(d["_id"]) for d in newest_first[5:10]]
    assert body["totalCount"] == 12


def test_all_requests_status_filter(client, volunteer, make_request):
    for _ in range(3):
        make_request(donation_status="done")
    make_request()

    body = client.get("/all-requests?status=done&page=5", headers=volunteer).json()

    assert body["requests"] == []
    assert body["totalCount"] == 3


def test_all_requests_requires_staff(client, make_user):
    make_user("d@x.com")
    res = client.get("/all-requests", headers=auth_header("d@x.com"))
    assert res.status_code == 403


def test_all_pending_requests_is_public(client, make_request):
    make_request()
    make_request(donation_status="inprogress")

    body = client.get("/all-pending-requests").json()

    assert body["totalCount"] == 1
    assert body["requests"][0]["donation_status"] == "pending"


def test_get_request(client, make_request):
    doc = make_request()
    res = client.get(f"/request/{doc['_id']}", headers=auth_header("a@x.com"))
    assert res.status_code == 200
    assert res.json()["recipient_name"] == doc["recipient_name"]


def test_get_request_not_found(client):
    res = client.get(f"/request/{ObjectId()}", headers=auth_header("a@x.com"))
    assert res.status_code == 404


def test_get_request_bad_id(client):
    res = client.get("/request/not-an-id", headers=auth_header("a@x.com"))
    assert res.status_code == 400
    assert res.json() == {"message": "Invalid id"}


def test_requester_updates_fields(client, db, make_request):
    doc = make_request()
    res = client.patch(f"/request/update/{doc['_id']}", json={"hospital_name": "CMH"},
                       headers=auth_header("req@x.com"))

    assert res.json()["modifiedCount"] == 1
    updated = db["request"].find_one({"_id": doc["_id"]})
    assert updated["hospital_name"] == "CMH"
    assert updated["recipient_name"] == doc["recipient_name"]


def test_stranger_cannot_update(client, db, make_user, make_request):
    make_user("d@x.com")
    doc = make_request()
    res = client.patch(f"/request/update/{doc['_id']}", json={"hospital_name": "CMH"},
                       headers=auth_header("d@x.com"))

    assert res.status_code == 403
    assert db["request"].find_one({"_id": doc["_id"]})["hospital_name"] == "DMCH"


def test_staff_updates_status(client, db, volunteer, make_request):
    doc = make_request()
    res = client.patch(f"/request/status/{doc['_id']}", json={"donation_status": "canceled"}, headers=volunteer)

    assert res.status_code == 200
    assert db["request"].find_one({"_id": doc["_id"]})["donation_status"] == "canceled"


def test_unknown_status_rejected(client, make_request):
    doc = make_request()
    res = client.patch(f"/request/status/{doc['_id']}", json={"donation_status": "lost"},
                       headers=auth_header("req@x.com"))
    assert res.status_code == 400


def test_donor_claims_request(client, db, make_request):
    doc = make_request()
    res = client.patch(f"/requests/donate/{doc['_id']}", json={"donor_name": "Karim"},
                       headers=auth_header("donor@x.com"))

    assert res.json()["modifiedCount"] == 1
    claimed = db["request"].find_one({"_id": doc["_id"]})
    assert claimed["donor_email"] == "donor@x.com"
    assert claimed["donor_name"] == "Karim"
    assert claimed["donation_status"] == "inprogress"


def test_second_claim_matches_nothing(client, db, make_request):
    doc = make_request()
    client.patch(f"/requests/donate/{doc['_id']}", json={"donor_name": "First"},
                 headers=auth_header("first@x.com"))
    res = client.patch(f"/requests/donate/{doc['_id']}", json={"donor_name": "Second"},
                       headers=auth_header("second@x.com"))

    assert res.status_code == 200
    assert res.json()["matchedCount"] == 0
    assert db["request"].find_one({"_id": doc["_id"]})["donor_email"] == "first@x.com"


def test_assigned_donor_marks_done(client, db, make_request):
    doc = make_request(donation_status="inprogress", donor_email="donor@x.com")
    res = client.patch(f"/request/status/{doc['_id']}", json={"donation_status": "done"},
                       headers=auth_header("donor@x.com"))
    assert res.status_code == 200
    assert db["request"].find_one({"_id": doc["_id"]})["donation_status"] == "done"


def test_delete_request(client, db, make_request):
    doc = make_request()
    res = client.delete(f"/request/delete/{doc['_id']}", headers=auth_header("req@x.com"))
    assert res.json()["deletedCount"] == 1
    assert db["request"].count_documents({}) == 0


def test_delete_missing_request_is_silent(client):
    res = client.delete(f"/requests/{ObjectId()}", headers=auth_header("req@x.com"))
    assert res.status_code == 200
    assert res.json()["deletedCount"] == 0


def test_my_requests_status_filter(client, make_request):
    make_request(requester_email="me@x.com")
    make_request(requester_email="me@x.com", donation_status="done")
    make_request(requester_email="other@x.com", donation_status="done")

    body = client.get("/my-request?status=done", headers=auth_header("me@x.com")).json()

    assert body["totalCount"] == 1
    assert body["requests"][0]["requester_email"] == "me@x.com"


def test_my_recent_requests_returns_three_newest(client, make_request):
    made = [make_request(requester_email="me@x.com") for _ in range(5)]

    res = client.get("/my-requests-recent", headers=auth_header("me@x.com")).json()

    assert [r["_id"] for r in res] == [str(d["_id"]) for d in reversed(made[2:])]


def test_blocked_user_cannot_claim(client, db, make_user, make_request):
    make_user("donor@x.com", status="blocked")
    doc = make_request()

    res = client.patch(f"/requests/donate/{doc['_id']}", json={"donor_name": "Karim"},
                       headers=auth_header("donor@x.com"))

    assert res.status_code == 403
    assert db["request"].find_one({"_id": doc["_id"]})["donation_status"] == "pending"


def test_requester_cannot_claim_own_request(client, db, make_request):
    doc = make_request(requester_email="req@x.com")

    res = client.patch(f"/requests/donate/{doc['_id']}", json={"donor_name": "Me"},
                       headers=auth_header("req@x.com"))

    assert res.json()["matchedCount"] == 0
    claimed = db["request"].find_one({"_id": doc["_id"]})
    assert claimed["donation_status"] == "pending"
    assert "donor_email" not in claimed
