from tenantreport.batch.executor import execute_batch
from tenantreport.batch.runner import run_batched
from tenantreport.core.models import BatchSubRequest
from tenantreport.http.errors import NetworkError, ServerError


def _subs(n):
    return [BatchSubRequest(id=str(i), url=f"/users/u{i}") for i in range(n)]


def test_empty_batch_is_a_noop(graph):
    assert execute_batch(graph, [], "empty") is None
    assert graph.batch_calls == []


def test_payload_matches_batch_contract(graph):
    raw = execute_batch(graph, _subs(2), "ok")
    assert graph.batch_calls == [[
        {"id": "0", "method": "GET", "url": "/users/u0"},
        {"id": "1", "method": "GET", "url": "/users/u1"},
    ]]
    assert [r["id"] for r in raw["responses"]] == ["0", "1"]


def test_transport_failure_returns_none(graph):
    def boom(requests):
        raise NetworkError(-1, "https://graph.microsoft.com/v1.0/$batch", "connection reset")
    graph.batch_handler = boom
    assert execute_batch(graph, _subs(3), "down") is None


def test_non_object_response_returns_none(graph):
    graph.batch_handler = lambda requests: ["unexpected"]
    assert execute_batch(graph, _subs(1), "odd") is None


def test_runner_sends_chunks_sequentially_and_returns_one_outcome_each(graph):
    users = [{"id": f"u{i}"} for i in range(45)]
    outcomes = run_batched(graph, users, lambda u: f"/users/{u['id']}", chunk_size=20,
                           id_prefix="sum", label="t")
    assert [len(c) for c in graph.batch_calls] == [20, 20, 5]
    assert len(outcomes) == 45
    assert all(o.success for o in outcomes)


def test_runner_survives_one_failed_chunk(graph):
    calls = {"n": 0}

    def flaky(requests):
        calls["n"] += 1
        if calls["n"] == 2:
            raise ServerError(500, "$batch", "Server error")
        return {"responses": [{"id": r["id"], "status": 200, "body": {}} for r in requests]}

    graph.batch_handler = flaky
    users = [{"id": f"u{i}"} for i in range(30)]
    outcomes = run_batched(graph, users, lambda u: f"/users/{u['id']}", chunk_size=10,
                           id_prefix="sum", label="t")
    assert len(outcomes) == 30
    assert sum(1 for o in outcomes if not o.success) == 10
    assert all(o.status is None for o in outcomes if not o.success)


def test_throttled_items_are_retried_in_place(graph):
    attempts = {}

    def throttle_first(requests):
        out = []
        for r in requests:
            n = attempts.get(r["url"], 0)
            attempts[r["url"]] = n + 1
            if r["url"] == "/users/u1" and n == 0:
                out.append({"id": r["id"], "status": 429, "headers": {"retry-after": "1"}, "body": {}})
            else:
                out.append({"id": r["id"], "status": 200, "body": {"url": r["url"]}})
        return {"responses": out}

    graph.batch_handler = throttle_first
    users = [{"id": f"u{i}"} for i in range(3)]
    outcomes = run_batched(graph, users, lambda u: f"/users/{u['id']}", chunk_size=20,
                           id_prefix="sum", label="t", max_item_retries=2)

    assert len(graph.batch_calls) == 2
    assert [c["url"] for c in graph.batch_calls[1]] == ["/users/u1"]
    assert all(o.success for o in outcomes)
    assert outcomes[1].context == {"id": "u1"}


def test_transport_failures_are_not_retried(graph):
    graph.batch_handler = lambda requests: None
    users = [{"id": "a"}, {"id": "b"}]
    outcomes = run_batched(graph, users, lambda u: f"/users/{u['id']}", chunk_size=20,
                           id_prefix="sum", label="t", max_item_retries=3)
    assert len(graph.batch_calls) == 1
    assert [o.success for o in outcomes] == [False, False]


def test_retry_budget_is_respected(graph):
    graph.batch_handler = lambda requests: {
        "responses": [{"id": r["id"], "status": 503, "body": {}} for r in requests]
    }
    outcomes = run_batched(graph, [{"id": "a"}], lambda u: f"/users/{u['id']}", chunk_size=20,
                           id_prefix="sum", label="t", max_item_retries=2)
    assert len(graph.batch_calls) == 3
    assert outcomes[0].status == 503 and not outcomes[0].success
