import asyncio
import json

import httpx
import pytest

from flowdeck.config import AIConfig, FlowdeckConfig, HttpConfig
from flowdeck.errors import ConfigurationError, HandlerError
from flowdeck.handlers import (
    AIActionHandler,
    AIResponse,
    APICallHandler,
    DecisionHandler,
    HandlerRegistry,
    ParallelHandler,
    StepContext,
    StepHandler,
    UserInputHandler,
    sanitize,
)
from flowdeck.handlers.ai_action import build_prompt
from flowdeck.models import Step, StepType


class FakeAIClient:
    def __init__(self, result="summary", error=None):
        self.result = result
        self.error = error
        self.requests = []

    async def generate(self, request):
        self.requests.append(request)
        if self.error:
            raise self.error
        return AIResponse(result=self.result, usage={"input_tokens": 3, "output_tokens": 5})


class EchoHandler(StepHandler):
    async def execute(self, step, context):
        return {"inputs": context.inputs}


def _context(step, results=None, workflow_inputs=None):
    return StepContext("exec-1", results or {}, workflow_inputs or {}, step.inputs)


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ----------------------------------------------------------------------
# ai_action
@pytest.mark.asyncio
async def test_ai_action_builds_request_with_context():
    client = FakeAIClient()
    handler = AIActionHandler(client, AIConfig(default_model="test:model"))
    step = Step(
        id="summarize",
        type=StepType.AI_ACTION,
        name="Summarize",
        config={"prompt": "Summarize the findings", "taskType": "summary", "temperature": 0.1},
        inputs={"topic": "agents"},
    )

    output = await handler.execute(step, _context(step, results={"fetch": {"_secret": 1, "n": 2}}))

    request = client.requests[0]
    assert request.prompt == "Summarize the findings"
    assert request.model == "test:model"
    assert request.temperature == 0.1
    assert request.max_tokens == 1000
    assert request.context["step_inputs"] == {"topic": "agents"}
    assert request.context["step_results"] == {"fetch": {"n": 2}}
    assert request.context["workflow_context"]["step_type"] == "ai_action"
    assert output["result"] == "summary"
    assert output["task_type"] == "summary"
    assert output["model"] == "test:model"
    assert output["usage"] == {"input_tokens": 3, "output_tokens": 5}
    assert "timestamp" in output


@pytest.mark.asyncio
async def test_ai_action_default_prompt_uses_step_name():
    client = FakeAIClient()
    step = Step(id="s1", type=StepType.AI_ACTION, name="Draft intro")

    await AIActionHandler(client).execute(step, _context(step))

    assert client.requests[0].prompt == "Process the following task: Draft intro"


@pytest.mark.asyncio
async def test_ai_action_client_failure_is_retryable():
    handler = AIActionHandler(FakeAIClient(error=ConnectionError("model offline")))
    step = Step(id="s1", type=StepType.AI_ACTION)

    with pytest.raises(HandlerError) as exc:
        await handler.execute(step, _context(step))

    assert exc.value.retryable
    assert "model offline" in str(exc.value)


def test_build_prompt_renders_context():
    prompt = build_prompt("Rank them", {"topic": "ai", "data": {"n": 1}})
    assert prompt == 'Context:\ntopic: ai\ndata: {"n": 1}\n\nTask: Rank them'
    assert build_prompt("Plain", {}) == "Plain"


def test_sanitize_bounds_depth_width_and_cycles():
    cyclic = {"name": "root"}
    cyclic["self"] = cyclic
    nested = current = {}
    for _ in range(15):
        current["child"] = {}
        current = current["child"]

    assert sanitize(cyclic) == {"name": "root", "self": "[Circular reference]"}
    assert len(sanitize(list(range(50)))) == 20
    assert "[Max depth reached]" in json.dumps(sanitize(nested))
    assert sanitize({"fn": len}) == {"fn": "[Function]"}


# ----------------------------------------------------------------------
# api_call
@pytest.mark.asyncio
async def test_api_call_resolves_relative_url_and_sends_json():
    seen = {}

    def respond(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["method"] = request.method
        seen["body"] = json.loads(request.content)
        seen["content_type"] = request.headers["content-type"]
        return httpx.Response(200, json={"ok": True})

    handler = APICallHandler(HttpConfig(base_url="http://api.test/"), client=_client(respond))
    step = Step(
        id="post",
        type=StepType.API_CALL,
        config={
            "url": "/v1/items",
            "method": "post",
            "body": {"name": "x"},
            "query_params": {"page": 2, "skip": None},
        },
    )

    output = await handler.execute(step, _context(step))

    assert seen["url"] == "http://api.test/v1/items?page=2"
    assert seen["method"] == "POST"
    assert seen["body"] == {"name": "x"}
    assert seen["content_type"] == "application/json"
    assert output["success"] is True
    assert output["status"] == 200
    assert output["data"] == {"ok": True}


@pytest.mark.asyncio
async def test_api_call_returns_text_for_non_json():
    handler = APICallHandler(
        client=_client(lambda request: httpx.Response(200, text="plain body"))
    )
    step = Step(id="get", type=StepType.API_CALL, config={"url": "https://example.test/x"})

    output = await handler.execute(step, _context(step))

    assert output["data"] == "plain body"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, retryable",
    [(500, True), (503, True), (429, True), (408, True), (404, False), (400, False)],
)
async def test_api_call_error_statuses(status, retryable):
    handler = APICallHandler(client=_client(lambda request: httpx.Response(status)))
    step = Step(id="get", type=StepType.API_CALL, config={"url": "https://example.test/x"})

    with pytest.raises(HandlerError) as exc:
        await handler.execute(step, _context(step))

    assert exc.value.retryable is retryable
    assert str(status) in str(exc.value)


@pytest.mark.asyncio
async def test_api_call_transport_error_is_retryable():
    def fail(request):
        raise httpx.ConnectError("refused", request=request)

    handler = APICallHandler(client=_client(fail))
    step = Step(id="get", type=StepType.API_CALL, config={"url": "https://example.test/x"})

    with pytest.raises(HandlerError) as exc:
        await handler.execute(step, _context(step))

    assert exc.value.retryable


@pytest.mark.asyncio
async def test_api_call_without_url_is_configuration_error():
    step = Step(id="get", type=StepType.API_CALL)
    with pytest.raises(ConfigurationError):
        await APICallHandler().execute(step, _context(step))


# ----------------------------------------------------------------------
# decision / user_input
@pytest.mark.asyncio
async def test_decision_reports_path():
    step = Step(
        id="check",
        type=StepType.DECISION,
        config={"condition": "fetch.count > 3", "truePath": "publish", "falsePath": "retry"},
    )

    taken = await DecisionHandler().execute(step, _context(step, results={"fetch": {"count": 5}}))
    not_taken = await DecisionHandler().execute(
        step, _context(step, results={"fetch": {"count": 1}})
    )

    assert taken == {"decision": True, "condition": "fetch.count > 3", "path": "publish"}
    assert not_taken["decision"] is False
    assert not_taken["path"] == "retry"


@pytest.mark.asyncio
async def test_decision_sees_workflow_inputs():
    step = Step(id="check", type=StepType.DECISION, config={"condition": "mode == 'fast'"})
    output = await DecisionHandler().execute(step, _context(step, workflow_inputs={"mode": "fast"}))
    assert output["decision"] is True


@pytest.mark.asyncio
async def test_decision_with_malformed_condition_is_configuration_error():
    step = Step(id="check", type=StepType.DECISION, config={"condition": "a ==="})
    with pytest.raises(ConfigurationError):
        await DecisionHandler().execute(step, _context(step))


@pytest.mark.asyncio
async def test_user_input_echoes_inputs():
    step = Step(id="ask", type=StepType.USER_INPUT, inputs={"answer": 42})
    output = await UserInputHandler().execute(step, _context(step))
    assert output["user_input"] == {"answer": 42}


# ----------------------------------------------------------------------
# loop / parallel / registry
@pytest.mark.asyncio
async def test_loop_runs_each_item_until_condition():
    registry = HandlerRegistry.default(ai_client=FakeAIClient())
    registry.register(StepType.DATA_PROCESSING, EchoHandler())
    step = Step(
        id="each",
        type=StepType.LOOP,
        config={"items": ["a", "b", "c", "d"], "until": "current_item == 'b'"},
    )

    output = await registry.dispatch(step, _context(step))

    assert output["iterations"] == 2
    assert [r["inputs"]["current_item"] for r in output["loop_results"]] == ["a", "b"]
    assert [r["inputs"]["iteration"] for r in output["loop_results"]] == [0, 1]


@pytest.mark.asyncio
async def test_loop_reads_items_from_results_and_caps_iterations():
    registry = HandlerRegistry.default(
        FlowdeckConfig(engine={"max_iterations": 3}), ai_client=FakeAIClient()
    )
    step = Step(id="each", type=StepType.LOOP, config={"items_from": "fetch.data"})

    output = await registry.dispatch(
        step, _context(step, results={"fetch": {"data": [1, 2, 3, 4, 5]}})
    )

    assert output["iterations"] == 3


@pytest.mark.asyncio
async def test_loop_without_items_runs_zero_iterations():
    registry = HandlerRegistry.default(ai_client=FakeAIClient())
    step = Step(id="each", type=StepType.LOOP)
    assert await registry.dispatch(step, _context(step)) == {"loop_results": [], "iterations": 0}


@pytest.mark.asyncio
async def test_nested_loop_is_refused():
    registry = HandlerRegistry.default(ai_client=FakeAIClient())
    step = Step(id="each", type=StepType.LOOP, config={"items": [1], "loop_step_type": "loop"})
    with pytest.raises(ConfigurationError):
        await registry.dispatch(step, _context(step))


@pytest.mark.asyncio
async def test_parallel_joins_results_in_order():
    registry = HandlerRegistry.default(ai_client=FakeAIClient(result="drafted"))
    step = Step(
        id="fan",
        type=StepType.PARALLEL,
        config={
            "steps": [
                {"type": "ai_action", "config": {"prompt": "one"}},
                {"type": "decision", "config": {"condition": True}},
            ]
        },
    )

    output = await registry.dispatch(step, _context(step))

    results = output["parallel_results"]
    assert results[0]["result"] == "drafted"
    assert results[1]["decision"] is True


@pytest.mark.asyncio
async def test_parallel_rejects_invalid_sub_step():
    registry = HandlerRegistry.default(ai_client=FakeAIClient())
    step = Step(id="fan", type=StepType.PARALLEL, config={"steps": [{"type": "warp"}]})
    with pytest.raises(ConfigurationError):
        await registry.dispatch(step, _context(step))


class FailingHandler(StepHandler):
    async def execute(self, step, context):
        raise HandlerError("sub-step exploded", retryable=False)


class SlowHandler(StepHandler):
    def __init__(self):
        self.cancelled = False

    async def execute(self, step, context):
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return {"slow": True}


@pytest.mark.asyncio
async def test_parallel_failure_cancels_sibling_sub_steps():
    slow = SlowHandler()
    registry = HandlerRegistry()
    registry.register(StepType.PARALLEL, ParallelHandler(registry))
    registry.register(StepType.API_CALL, FailingHandler())
    registry.register(StepType.DATA_PROCESSING, slow)
    step = Step(
        id="fan",
        type=StepType.PARALLEL,
        config={"steps": [{"type": "data_processing"}, {"type": "api_call"}]},
    )

    with pytest.raises(HandlerError):
        await registry.dispatch(step, _context(step))

    assert slow.cancelled


def test_registry_unknown_type_is_configuration_error():
    registry = HandlerRegistry()
    assert not registry.supports("ai_action")
    assert not registry.supports("warp")
    with pytest.raises(ConfigurationError):
        registry.get("warp")
    with pytest.raises(ConfigurationError):
        registry.get(StepType.AI_ACTION)


def test_default_registry_covers_every_step_type():
    registry = HandlerRegistry.default(ai_client=FakeAIClient())
    assert all(registry.supports(step_type) for step_type in StepType)
