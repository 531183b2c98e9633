import json

import httpx
import pytest
from langchain_core.messages import AIMessage

from core.review_config import ReviewConfig, ReviewRule
from services.llm_service import ReviewModelClient

SCENARIO_A_PATCH = (
    "@@ -1,3 +1,5 @@\n"
    " function f() {\n"
    "-  return 1;\n"
    "+  // todo\n"
    "+  const r = g();\n"
    "+  return r;\n"
    " }\n"
)

TWO_HUNK_PATCH = (
    "@@ -1,4 +1,5 @@\n"
    " import os\n"
    "+import sys\n"
    " \n"
    " def main():\n"
    "     pass\n"
    "@@ -20,3 +21,4 @@ def helper():\n"
    "     a = 1\n"
    "-    b = 2\n"
    "+    b = 3\n"
    "+    c = 4\n"
    "     return a\n"
)


class FakeChatModel:
    """Stands in for a langchain chat model; replays canned responses."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    async def ainvoke(self, messages):
        self.calls.append(messages)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        content, usage = response
        return AIMessage(
            content=content,
            usage_metadata={
                "input_tokens": usage[0],
                "output_tokens": usage[1],
                "total_tokens": usage[0] + usage[1],
            },
        )


def model_reply(comments, usage=(10, 5)):
    return json.dumps({"comments": comments}), usage


@pytest.fixture
def make_model_client():
    def factory(*responses):
        model = FakeChatModel(responses)
        return ReviewModelClient(model), model

    return factory


@pytest.fixture
def review_config():
    return ReviewConfig(
        rules=[
            ReviewRule(include=["**/*.js"], prompt="Check error handling."),
        ],
        exclude_files=["**/dist/**"],
    )


class FakeGitHub:
    """Records GitHub REST calls and answers them from a route table."""

    def __init__(self, routes=None):
        self.routes = routes or {}
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        route = self.routes.get(key)
        if route is None:
            return httpx.Response(404, json={"message": "Not Found"})
        if callable(route):
            return route(request)
        status, body = route
        return httpx.Response(status, json=body)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def sent(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == path]
