def _event(client, headers, **fields):
    fields.setdefault("title", "Standup")
    fields.setdefault("start", "2030-03-01T09:00:00Z")
    fields.setdefault("end", "2030-03-01T09:30:00Z")
    return client.post("/api/calendar/events", headers=headers, json=fields)


def test_create_event(client, auth):
    response = _event(client, auth, location="Room 1")
    assert response.status_code == 201
    event = response.get_json()
    assert event["start"] == "2030-03-01T09:00:00Z"
    assert event["end"] == "2030-03-01T09:30:00Z"
    assert event["location"] == "Room 1"


def test_event_times_validated(client, auth):
    assert _event(client, auth, end="2030-03-01T08:00:00Z").status_code == 400
    assert _event(client, auth, start=None).status_code == 400
    assert _event(client, auth, title="").status_code == 400


def test_list_filters_by_overlap(client, auth):
    _event(client, auth, title="Morning")
    _event(client, auth, title="Next day", start="2030-03-02T09:00:00Z", end="2030-03-02T10:00:00Z")
    events = client.get("/api/calendar/events?start=2030-03-01T09:15:00Z&end=2030-03-01T23:00:00Z",
                        headers=auth).get_json()["events"]
    assert [e["title"] for e in events] == ["Morning"]
    everything = client.get("/api/calendar/events", headers=auth).get_json()["events"]
    assert [e["title"] for e in everything] == ["Morning", "Next day"]


def test_update_and_delete(client, register):
    owner, _ = register()
    other, _ = register()
    event = _event(client, owner).get_json()
    assert client.put(f"/api/calendar/events/{event['id']}", headers=other, json={"title": "x"}).status_code == 403
    assert client.put(f"/api/calendar/events/{event['id']}", headers=owner,
                      json={"end": "2030-03-01T08:00:00Z"}).status_code == 400

    updated = client.put(f"/api/calendar/events/{event['id']}", headers=owner,
                         json={"title": "Retro", "end": "2030-03-01T10:00:00Z"}).get_json()
    assert updated["title"] == "Retro"
    assert updated["end"] == "2030-03-01T10:00:00Z"

    assert client.delete(f"/api/calendar/events/{event['id']}", headers=owner).status_code == 200
    assert client.delete(f"/api/calendar/events/{event['id']}", headers=owner).status_code == 404
