"""Shared fixtures: deterministic clock, in-memory store and a fake Content API."""

from typing import Dict, List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from auth import AuthManager, Credentials
from config import Config
from content_client import ContentClient
from main import create_app
from storage import MemoryStore
from tools import ContentTools

API_KEY = "test-api-key"

NORMALIZATION_MDX = (
    "# 정규화\n"
    "\n"
    "정규화는 이상 현상을 제거하는 과정이다.\n"
    "\n"
    "| 키워드 | 설명 |\n"
    "|---|---|\n"
    "| 1NF | 원자값 |\n"
    "\n"
    "## 예시\n"
)

TCP_MDX = (
    "# TCP\n"
    "\n"
    "| 계층 | 프로토콜 |\n"
    "|---|---|\n"
    "| 전송 | TCP |\n"
    "\n"
    "끝\n"
)


class FakeClock:
    """Settable clock returning epoch seconds"""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeContentAPI:
    """In-process stand-in for the jcg-gamza Content API, served through httpx.MockTransport"""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.fail_status: Optional[int] = None
        self.subjects = [
            {"slug": "db", "name": "데이터베이스", "fileCount": 2},
            {"slug": "network-os", "name": "네트워크/운영체제", "fileCount": 1},
        ]
        self.theory: Dict[str, list] = {
            "db": [
                {"filename": "normalization", "title": "정규화", "tags": ["DB", "설계"]},
                {"filename": "transaction", "title": None},
            ],
            "network-os": [
                {"filename": "tcp", "title": "TCP", "description": "전송 계층"},
            ],
        }
        self.documents = {
            ("db", "normalization"): {
                "filename": "normalization",
                "title": "정규화",
                "description": "이상 현상 제거",
                "tags": ["DB"],
                "content": NORMALIZATION_MDX,
            },
            ("db", "transaction"): {
                "filename": "transaction",
                "title": "트랜잭션",
                "content": "# 트랜잭션\n\nACID 성질\n",
            },
            ("network-os", "tcp"): {
                "filename": "tcp",
                "title": "TCP",
                "content": TCP_MDX,
            },
        }
        self.exam_files = [
            {"filename": "schedule", "title": "시험 일정", "tags": ["2025"]},
        ]
        self.exam_documents = {
            "schedule": {"filename": "schedule", "title": "시험 일정", "content": "1회: 3월"},
        }
        self.search_results = [
            {
                "subject": "db",
                "filename": "normalization",
                "title": "정규화",
                "matchedContent": "정규화는\n이상 현상",
                "matchCount": 3,
            },
        ]

    @staticmethod
    def ok(data) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "data": data})

    @staticmethod
    def not_found(message: str = "Not found") -> httpx.Response:
        return httpx.Response(404, json={"success": False, "error": message})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.headers.get("x-mcp-api-key") != API_KEY:
            return httpx.Response(401, json={"success": False, "error": "Unauthorized"})
        if self.fail_status:
            return httpx.Response(self.fail_status, text="upstream failure")

        path = request.url.path
        params = request.url.params

        if path == "/api/content/subjects":
            return self.ok(self.subjects)

        if path == "/api/content/theory":
            subject = params.get("subject")
            filename = params.get("file")
            if filename is None:
                if subject not in self.theory:
                    return self.not_found("Subject not found")
                return self.ok({"subject": subject, "files": self.theory[subject]})
            document = self.documents.get((subject, filename))
            return self.ok(document) if document else self.not_found("File not found")

        if path == "/api/content/search":
            query = params.get("q", "")
            results = [r for r in self.search_results if query in r["title"] or query in r["matchedContent"]]
            return self.ok({"query": query, "totalResults": len(results), "results": results})

        if path == "/api/content/exam-registration":
            filename = params.get("file")
            if filename is None:
                return self.ok({"files": self.exam_files})
            document = self.exam_documents.get(filename)
            return self.ok(document) if document else self.not_found("File not found")

        return self.not_found()

    def paths(self) -> List[str]:
        """Path and query of every request received, percent-encoded"""
        return [r.url.raw_path.decode("ascii") for r in self.requests]


@pytest.fixture
def env() -> Dict[str, str]:
    return {
        "ENVIRONMENT": "test",
        "JCG_GAMJA_API_URL": "https://content.test/",
        "MCP_API_KEY": API_KEY,
        "AUTH_USERNAME": "admin",
        "AUTH_PASSWORD": "secret-pw",
        "MCP_AUTH_TOKEN": "legacy-token-123",
    }


@pytest.fixture
def config(env) -> Config:
    return Config(env)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> MemoryStore:
    return MemoryStore(clock=clock)


@pytest.fixture
def credentials(config) -> Credentials:
    return Credentials.from_config(config)


@pytest.fixture
def auth_manager(config, store, credentials, clock) -> AuthManager:
    return AuthManager(config, store, credentials, clock=clock)


@pytest.fixture
def content_api() -> FakeContentAPI:
    return FakeContentAPI()


@pytest.fixture
def content_client(config, content_api) -> ContentClient:
    return ContentClient(config, transport=httpx.MockTransport(content_api.handler))


@pytest.fixture
def content_tools(content_client) -> ContentTools:
    return ContentTools(content_client)


@pytest.fixture
def app(config, store, content_client, credentials, clock):
    return create_app(config, store=store, content_client=content_client, credentials=credentials, clock=clock)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
