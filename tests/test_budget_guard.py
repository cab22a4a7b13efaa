from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

import pytest
from conftest import create_proposal, make_draft

from vidflow.core.errors import BudgetCapOutOfRange, BudgetExceeded, ProjectNotFound
from vidflow.models import AgentRole, EventFilter


async def test_spend_is_the_sum_of_every_proposal_regardless_of_status(services, project, scene):
    applied = await create_proposal(services, scene, make_draft(cost=Decimal("1.25")))
    dismissed = await create_proposal(
        services, scene, make_draft(AgentRole.DIRECTOR, cost=Decimal("0.75"))
    )
    await create_proposal(services, scene, make_draft(AgentRole.EDITOR, cost=Decimal("0.50")))

    before = await services.budget.state(project.id)
    await services.proposals.apply(applied.id)
    await services.proposals.dismiss(dismissed.id)
    after = await services.budget.state(project.id)

    assert before.current_spend_usd == Decimal("2.5")
    assert after.current_spend_usd == before.current_spend_usd
    assert after.remaining_usd == Decimal("7.5")
    assert after.utilization_percent == pytest.approx(25.0)


async def test_authorize_refuses_an_estimate_that_would_pass_the_cap(services, project, scene):
    await create_proposal(services, scene, make_draft(cost=Decimal("9.50")))

    with pytest.raises(BudgetExceeded) as excinfo:
        await services.budget.authorize(project.id, Decimal("1.00"))

    assert excinfo.value.error_code == "BUDGET_EXCEEDED"
    assert "current spend $9.5000, cap $10.0000, estimated cost $1.0000" in excinfo.value.message
    state = await services.budget.authorize(project.id, Decimal("0.50"))
    assert state.current_spend_usd == Decimal("9.5")


async def test_zero_cap_means_unlimited(services):
    project = await services.scenes.create_project("Open budget")
    scene = await services.scenes.add_scene(project.id, "Opening")
    await create_proposal(services, scene, make_draft(cost=Decimal("500")))

    state = await services.budget.authorize(project.id, Decimal("1000"))
    assert state.unlimited
    assert state.remaining_usd is None
    assert state.utilization_percent == 0.0


async def test_set_cap_validates_and_records_the_change(services, project):
    with pytest.raises(BudgetCapOutOfRange):
        await services.budget.set_cap(project.id, Decimal("-1"))
    with pytest.raises(ProjectNotFound):
        await services.budget.set_cap(uuid4(), Decimal("5"))

    state = await services.budget.set_cap(project.id, Decimal("25"), emitted_by="producer:kim")

    assert state.budget_cap_usd == Decimal("25")
    entries = await services.ledger.query(
        EventFilter(project_id=project.id, event_type="ProjectBudgetCapChanged")
    )
    assert len(entries) == 1
    event = entries[0].to_event()
    assert event.previous_cap_usd == Decimal("10")
    assert event.new_cap_usd == Decimal("25")
    assert entries[0].emitted_by == "producer:kim"


async def test_cost_report_breaks_spend_down_by_role_and_scene(services, project, scene):
    second = await services.scenes.add_scene(project.id, "Rooftop")
    await create_proposal(services, scene, make_draft(AgentRole.WRITER, cost=Decimal("0.30")))
    await create_proposal(services, scene, make_draft(AgentRole.WRITER, cost=Decimal("0.20")))
    await create_proposal(services, second, make_draft(AgentRole.EDITOR, cost=Decimal("0.10")))

    report = await services.budget.cost_report(project.id)

    assert float(report.budget.current_spend_usd) == pytest.approx(0.6)
    assert report.total_tokens == 300
    assert [(item.role, item.proposal_count) for item in report.by_role] == [
        (AgentRole.WRITER, 2),
        (AgentRole.EDITOR, 1),
    ]
    assert [(item.scene_number, item.proposal_count) for item in report.by_scene] == [
        (1, 2),
        (2, 1),
    ]


async def test_cost_report_counts_every_recorded_model_call(services, project, scene, provider):
    provider.replies = {"editor": ""}
    provider.failures = {"showrunner": 1}

    await services.orchestrator.run(scene.id)
    report = await services.budget.cost_report(project.id)

    assert report.llm_calls == 6
    assert report.failed_llm_calls == 1
    assert float(report.llm_cost_usd) == pytest.approx(0.05)
    assert float(report.budget.current_spend_usd) == pytest.approx(0.04)
