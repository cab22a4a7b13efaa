from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

import pytest

from vidflow.agents.executor import AgentExecutor
from vidflow.bootstrap import Services, build_services
from vidflow.config import ProviderPricing, VidflowConfig
from vidflow.core.llm import LLMRequest, LLMResponse
from vidflow.core.logs import get_event_logger
from vidflow.models import AgentRole, ProposalDraft
from vidflow.store.db import build_engine, build_session_factory, create_all


class FakeClock:
    """Naive-UTC clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class RecordingNotifier:
    def __init__(self) -> None:
        self.published: list[tuple[str, str, dict[str, Any]]] = []

    async def publish(self, topic: str, event: str, payload: dict[str, Any]) -> None:
        self.published.append((topic, event, payload))

    def events(self, topic: str) -> list[str]:
        return [event for t, event, _ in self.published if t == topic]


class _FakeProvider:
    """Scripted provider: per-role replies and a number of failures per role."""

    name = "fake"

    def __init__(
        self,
        replies: dict[AgentRole, str] | None = None,
        failures: dict[AgentRole, int] | None = None,
        cost: Decimal = Decimal("0.01"),
    ) -> None:
        self.replies = {role.value: text for role, text in (replies or {}).items()}
        self.failures = {role.value: count for role, count in (failures or {}).items()}
        self.cost = cost
        self.requests: list[LLMRequest] = []

    @property
    def roles_called(self) -> list[str]:
        return [request.role or "" for request in self.requests]

    async def complete(self, request: LLMRequest) -> LLMResponse:
        self.requests.append(request)
        role = request.role or ""
        if self.failures.get(role, 0) > 0:
            self.failures[role] -= 1
            raise RuntimeError(f"{role} provider timed out")
        content = self.replies.get(role, f"{role} suggestion\nSecond line\nThird line")
        return LLMResponse(
            content=content,
            input_tokens=40,
            output_tokens=60,
            tokens_used=100,
            cost_usd=self.cost,
            model="fake-model",
        )


# Estimates stay tiny with these prices: (max_tokens + 1000) * 0.000001.
CHEAP_PRICING = ProviderPricing(
    cost_per_input_token=Decimal("0"), cost_per_output_token=Decimal("0.000001")
)


def make_executor(provider: _FakeProvider, pricing: ProviderPricing = CHEAP_PRICING) -> AgentExecutor:
    return AgentExecutor(
        provider=provider,
        pricing=pricing,
        prompt_overhead_tokens=1000,
        overrides={},
    )


def make_draft(
    role: AgentRole = AgentRole.WRITER,
    diff: dict[str, Any] | None = None,
    cost: Decimal = Decimal("0.10"),
) -> ProposalDraft:
    return ProposalDraft(
        role=role,
        summary=f"{role.value} summary",
        rationale="because",
        diff={"script": "INT. KITCHEN - NIGHT"} if diff is None else diff,
        tokens_used=100,
        cost_usd=cost,
        model="fake-model",
    )


async def create_proposal(services: Services, scene: Any, draft: ProposalDraft, job_id=None):
    async with services.session_factory() as session:
        proposal = await services.proposals.create_conn(session, scene, draft, job_id=job_id)
        await session.commit()
    return proposal


@pytest.fixture(autouse=True)
def _clear_event_log():
    get_event_logger().clear_logs()
    yield


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'vidflow.db'}")
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def provider() -> _FakeProvider:
    return _FakeProvider()


@pytest.fixture
def services(session_factory, notifier, provider, clock) -> Services:
    return build_services(
        session_factory,
        notifier=notifier,
        executor=make_executor(provider),
        clock=clock,
        settings=VidflowConfig(),
    )


@pytest.fixture
async def project(services):
    return await services.scenes.create_project("Night Shift", budget_cap_usd=Decimal("10"))


@pytest.fixture
async def scene(services, project):
    return await services.scenes.add_scene(
        project.id,
        "Kitchen confrontation",
        script="MARA: You said you'd be home.",
        narrative_goal="Reveal the lie",
        emotional_beat="Betrayal",
        location="Kitchen",
        time_of_day="Night",
        character_names=["Mara", "Jon"],
        runtime_target_seconds=60,
    )
