import pytest

from tenantreport.batch.correlator import EMPTY_RESPONSE_ERROR, MISSING_RESPONSE_ERROR, correlate


def _id_map(n):
    return {f"r{i}": {"id": f"user{i}"} for i in range(n)}


@pytest.mark.parametrize("raw", [None, {}, {"responses": []}, {"responses": "nope"}, ["not", "a", "dict"]])
def test_missing_response_fails_every_request(raw):
    id_map = _id_map(5)
    outcomes = correlate(raw, id_map, "test")

    assert len(outcomes) == 5
    assert all(not o.success and o.status is None for o in outcomes)
    assert all(o.error == EMPTY_RESPONSE_ERROR for o in outcomes)
    # total-failure path keeps id_map order
    assert [o.request_id for o in outcomes] == list(id_map)
    assert [o.context for o in outcomes] == list(id_map.values())


def test_success_follows_status_range():
    id_map = _id_map(6)
    raw = {"responses": [
        {"id": "r0", "status": 200, "body": {"value": []}},
        {"id": "r1", "status": 204, "body": None},
        {"id": "r2", "status": 299, "body": {}},
        {"id": "r3", "status": 300, "body": {}},
        {"id": "r4", "status": 404, "body": {"error": {"code": "Request_ResourceNotFound", "message": "gone"}}},
        {"id": "r5", "status": "503", "body": {}},
    ]}
    outcomes = correlate(raw, id_map, "test")

    assert len(outcomes) == 6
    for o in outcomes:
        assert o.success == (200 <= o.status < 300)
    failed = {o.request_id: o for o in outcomes if not o.success}
    assert set(failed) == {"r3", "r4", "r5"}
    assert "Request_ResourceNotFound" in failed["r4"].error
    # the failure keeps its body for diagnostics
    assert failed["r4"].body["error"]["message"] == "gone"


def test_output_follows_response_order():
    id_map = _id_map(3)
    raw = {"responses": [
        {"id": "r2", "status": 200, "body": {}},
        {"id": "r0", "status": 200, "body": {}},
        {"id": "r1", "status": 200, "body": {}},
    ]}
    assert [o.request_id for o in correlate(raw, id_map, "t")] == ["r2", "r0", "r1"]


def test_unmapped_id_does_not_disturb_siblings():
    id_map = _id_map(3)
    raw = {"responses": [
        {"id": "r0", "status": 200, "body": {"n": 0}},
        {"id": "bogus", "status": 200, "body": {"n": 99}},
        {"id": "r1", "status": 500, "body": {}},
        {"id": "r2", "status": 200, "body": {"n": 2}},
    ]}
    outcomes = correlate(raw, id_map, "t")

    assert len(outcomes) == 4
    stray = [o for o in outcomes if o.context is None]
    assert len(stray) == 1
    assert stray[0].request_id == "bogus" and not stray[0].success

    mapped = {o.request_id: o for o in outcomes if o.context is not None}
    assert mapped["r0"].context == {"id": "user0"} and mapped["r0"].body == {"n": 0}
    assert mapped["r1"].context == {"id": "user1"} and not mapped["r1"].success
    assert mapped["r2"].context == {"id": "user2"} and mapped["r2"].body == {"n": 2}


def test_unanswered_ids_are_reported_last():
    id_map = _id_map(3)
    raw = {"responses": [{"id": "r1", "status": 200, "body": {}}]}
    outcomes = correlate(raw, id_map, "t")

    assert [o.request_id for o in outcomes] == ["r1", "r0", "r2"]
    assert outcomes[1].error == MISSING_RESPONSE_ERROR
    assert outcomes[2].context == {"id": "user2"}


def test_sub_response_headers_are_kept():
    raw = {"responses": [{"id": "r0", "status": 429, "headers": {"Retry-After": "3"}, "body": {}}]}
    (o,) = correlate(raw, _id_map(1), "t")
    assert o.headers == {"Retry-After": "3"}
    assert not o.success
