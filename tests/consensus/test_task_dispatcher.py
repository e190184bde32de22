# tests/consensus/test_task_dispatcher.py
import json

import httpx
import pytest

from dss_core.consensus.dispatcher import TaskDispatcher
from dss_core.core.datatypes import Task
from dss_core.monitoring.metrics import get_metrics_manager


def _dispatcher(handler) -> TaskDispatcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TaskDispatcher(client=client, timeout=1.0)


@pytest.mark.asyncio
async def test_collects_valid_responses(accounts, operators, make_response):
    by_host = {
        f"operator-{i}.test": make_response(account, 7)
        for i, account in enumerate(accounts)
    }
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json=by_host[request.url.host].model_dump())

    dispatcher = _dispatcher(handler)
    try:
        responses = await dispatcher.dispatch(Task(value=7), frozenset(operators))
    finally:
        await dispatcher.client.aclose()

    assert len(responses) == len(operators)
    assert all(path == "/operator/task" and body == {"value": 7} for path, body in seen)
    assert responses[operators[0]].completed_task.response == 49


@pytest.mark.asyncio
async def test_drops_failing_operators(accounts, operators, make_response):
    good = make_response(accounts[0], 7)

    def handler(request: httpx.Request) -> httpx.Response:
        host = request.url.host
        if host == "operator-0.test":
            return httpx.Response(200, json=good.model_dump())
        if host == "operator-1.test":
            raise httpx.ReadTimeout("timed out", request=request)
        if host == "operator-2.test":
            return httpx.Response(500, json={"detail": "boom"})
        if host == "operator-3.test":
            return httpx.Response(200, content=b"not json")
        return httpx.Response(200, json={"unexpected": True})

    dispatcher = _dispatcher(handler)
    try:
        responses = await dispatcher.dispatch(Task(value=7), frozenset(operators))
    finally:
        await dispatcher.client.aclose()

    assert list(responses) == [operators[0]]


@pytest.mark.asyncio
async def test_connection_error_is_dropped(operators):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    dispatcher = _dispatcher(handler)
    try:
        responses = await dispatcher.dispatch(Task(value=3), frozenset(operators[:2]))
    finally:
        await dispatcher.client.aclose()
    assert responses == {}


@pytest.mark.asyncio
async def test_empty_snapshot_sends_nothing():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    dispatcher = _dispatcher(handler)
    try:
        assert await dispatcher.dispatch(Task(value=3), frozenset()) == {}
    finally:
        await dispatcher.client.aclose()


@pytest.mark.asyncio
async def test_request_metrics_by_status(accounts, operators, make_response):
    good = make_response(accounts[0], 7)

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "operator-0.test":
            return httpx.Response(200, json=good.model_dump())
        raise httpx.ReadTimeout("timed out", request=request)

    dispatcher = _dispatcher(handler)
    try:
        await dispatcher.dispatch(Task(value=7), frozenset(operators[:3]))
    finally:
        await dispatcher.client.aclose()

    registry = get_metrics_manager().get_registry()
    assert registry.get_sample_value("dss_operator_requests_total", {"status": "success"}) == 1
    assert registry.get_sample_value("dss_operator_requests_total", {"status": "timeout"}) == 2


@pytest.mark.asyncio
async def test_response_outside_uint256_is_invalid(accounts, operators, make_response):
    body = make_response(accounts[0], 7).model_dump()
    body["completed_task"]["response"] = 2**256

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=body)

    dispatcher = _dispatcher(handler)
    try:
        responses = await dispatcher.dispatch(Task(value=7), frozenset(operators[:1]))
    finally:
        await dispatcher.client.aclose()

    assert responses == {}
    registry = get_metrics_manager().get_registry()
    assert registry.get_sample_value("dss_operator_requests_total", {"status": "invalid"}) == 1
