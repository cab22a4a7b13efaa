from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

from conftest import make_draft

from vidflow.agents.base import AgentContext
from vidflow.agents.roles import (
    ROLE_AGENTS,
    CinematographerAgent,
    DirectorAgent,
    EditorAgent,
    ProducerAgent,
    ShowrunnerAgent,
    WriterAgent,
    default_agents,
)
from vidflow.core.llm import LLMResponse
from vidflow.models import ROLE_SEQUENCE, AgentRole, Scene


def _ctx(prior=(), runtime=60) -> AgentContext:
    scene = Scene(
        project_id=uuid4(),
        number=1,
        title="Kitchen confrontation",
        script="MARA: You said you'd be home.",
        narrative_goal="Reveal the lie",
        emotional_beat="Betrayal",
        location="Kitchen",
        time_of_day="Night",
        character_names=["Mara", "Jon"],
        runtime_target_seconds=runtime,
    )
    return AgentContext(scene=scene, prior=tuple(prior))


def _prior(role, runtime=0, cost="0.01"):
    draft = make_draft(role, cost=Decimal(cost))
    return draft.model_copy(update={"runtime_impact_seconds": runtime})


def test_default_agents_cover_every_role_in_order():
    agents = default_agents()
    assert tuple(agents) == ROLE_SEQUENCE
    assert set(ROLE_AGENTS) == set(AgentRole)


def test_writer_diff_rewrites_the_script():
    diff = WriterAgent().build_diff(_ctx(), "MARA: Where were you?")
    assert diff == {
        "script": "MARA: Where were you?",
        "narrative_goal": "Reveal the lie (enhanced for clarity)",
        "emotional_beat": "Betrayal (strengthened)",
    }


def test_director_prompt_includes_writer_notes_and_runtime_hint():
    writer = _prior(AgentRole.WRITER)
    agent = DirectorAgent()
    ctx = _ctx([writer])

    assert "writer summary" in agent.build_prompt(ctx)
    assert agent.runtime_impact(ctx, "Extend the silence") == 10
    assert agent.runtime_impact(ctx, "Trim the opening") == -5
    assert agent.runtime_impact(ctx, "Keep it") == 0


def test_shot_list_parsing():
    content = (
        "Opening thoughts on light.\n"
        "SHOT 1: Wide | 5s | Static | Kitchen from doorway\n"
        "SHOT 2: Close-up | 3s | Handheld\n"
        "Not a shot line\n"
    )
    shots = CinematographerAgent.parse_shots(content)

    assert [s["type"] for s in shots] == ["Wide", "Close-up"]
    assert shots[0]["description"] == "Kitchen from doorway"
    assert shots[1]["description"] == ""
    assert CinematographerAgent().rationale(content) == "Opening thoughts on light. Not a shot line"


def test_shot_list_falls_back_to_defaults():
    shots = CinematographerAgent.parse_shots("Just prose, no shots.")
    assert [s["type"] for s in shots] == ["Wide Shot", "Medium Shot"]
    assert CinematographerAgent().runtime_impact(_ctx(), "Just prose") == 6


def test_editor_runtime_heuristics():
    agent = EditorAgent()
    ctx = _ctx()
    assert agent.runtime_impact(ctx, "Trim heavily in the middle") == -15
    assert agent.runtime_impact(ctx, "Cut the pause") == -8
    assert agent.runtime_impact(ctx, "Expand the ending") == 5
    assert agent.runtime_impact(ctx, "Looks fine") == -3
    diff = agent.build_diff(ctx, "Pacing drags here\nCut line 3")
    assert diff["pacing_adjustments"] == ["Pacing drags here"]
    assert diff["suggested_cuts"] == ["Cut line 3"]


def test_producer_flags_runtime_and_cost_overruns():
    prior = [
        _prior(AgentRole.WRITER, runtime=15, cost="0.08"),
        _prior(AgentRole.CINEMATOGRAPHER, runtime=12, cost="0.05"),
    ]
    agent = ProducerAgent()
    ctx = _ctx(prior, runtime=100)

    checks = agent.check_constraints(ctx)

    assert checks["runtime_impact"] == 27
    assert checks["runtime_exceeded"] is True
    assert checks["total_cost"] == Decimal("0.13")
    assert checks["issues"][0] == "Runtime exceeds target by 27s (27% over)"
    assert "$0.1300" in checks["issues"][1]
    assert agent.summarize(ctx, "ok").startswith("Production constraints violated")
    assert agent.build_diff(ctx, "ok")["ready_for_approval"] is False


def test_producer_passes_a_clean_scene():
    agent = ProducerAgent()
    ctx = _ctx([_prior(AgentRole.WRITER, runtime=5)])

    assert agent.check_constraints(ctx)["issues"] == []
    assert agent.summarize(ctx, "ok") == "Scene meets all production constraints"
    assert agent.build_diff(ctx, "ok")["status"] == "Compliant"


def test_producer_rationale_is_truncated():
    agent = ProducerAgent()
    long_reply = "x" * 600
    assert agent.rationale(long_reply) == "x" * 500 + "..."
    assert agent.rationale("short") == "short"


def test_showrunner_score_and_issues():
    reply = (
        "Overall the scene is consistent with the story.\n"
        "Continuity issue: Jon's jacket changes colour.\n"
        "Rating: 6/10"
    )
    agent = ShowrunnerAgent()
    diff = agent.build_diff(_ctx(), reply)

    assert diff["integration_score"] == 6
    assert diff["continuity_issues"] == ["Continuity issue: Jon's jacket changes colour."]
    assert diff["overall_assessment"] == "NeedsRevision"
    assert agent.summarize(_ctx(), reply) == "Continuity review: 1 issue(s) found"


def test_showrunner_score_from_wording_when_no_rating():
    assert ShowrunnerAgent.integration_score("Cohesive and excellent work") == 9
    assert ShowrunnerAgent.integration_score("") == 7


def test_draft_uses_the_reply_and_its_cost():
    response = LLMResponse(
        content="Tighten the middle.\n\nLose the second beat.\nKeep the ending.\nExtra.",
        tokens_used=321,
        cost_usd=Decimal("0.02"),
        model="m",
    )
    draft = EditorAgent().draft(_ctx(), response)

    assert draft.rationale == "Tighten the middle. Lose the second beat. Keep the ending."
    assert (draft.tokens_used, draft.cost_usd, draft.model) == (321, Decimal("0.02"), "m")
    assert EditorAgent().draft(_ctx(), LLMResponse(content="")) is None
