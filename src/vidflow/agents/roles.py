# src/vidflow/agents/roles.py
"""The six pipeline roles."""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Any

from vidflow.models.enums import ROLE_SEQUENCE, AgentRole

from .base import AgentContext, RoleAgent

_SHOT_PREFIX = re.compile(r"^\s*SHOT\s*\d*\s*:?\s*", re.IGNORECASE)
_ISSUE_WORDS = ("issue", "inconsisten", "problem", "concern", "conflict", "break")


class WriterAgent(RoleAgent):
    role = AgentRole.WRITER
    max_tokens = 1500
    temperature = 0.7
    summary = "Enhance dialogue and narrative flow"
    system_prompt = (
        "You are a professional screenwriter helping to improve scenes for a short "
        "film. Focus on dialogue, narrative flow, and character voice."
    )

    def build_prompt(self, ctx: AgentContext) -> str:
        scene = ctx.scene
        return (
            "Analyze this scene and suggest improvements for dialogue and narrative flow:\n\n"
            "Scene Details:\n"
            f"- Title: {scene.title}\n"
            f"- Current Script: {scene.script}\n"
            f"- Narrative Goal: {scene.narrative_goal}\n"
            f"- Emotional Beat: {scene.emotional_beat}\n"
            f"- Location: {scene.location}\n"
            f"- Time of Day: {scene.time_of_day}\n"
            f"- Characters: {ctx.characters}\n\n"
            f"Previous Agent Proposals:\n{ctx.prior_summary()}\n\n"
            "Please provide specific suggestions for:\n"
            "1. Improving dialogue authenticity\n"
            "2. Strengthening narrative flow\n"
            "3. Enhancing character voice consistency\n"
            "4. Adding emotional depth where needed\n\n"
            "Return the improved script."
        )

    def rationale(self, content: str) -> str:
        return (
            "AI analysis suggests improvements to dialogue, character voice, and "
            "narrative progression for better storytelling."
        )

    def runtime_impact(self, ctx: AgentContext, content: str) -> int:
        return 15

    def build_diff(self, ctx: AgentContext, content: str) -> dict[str, Any]:
        return {
            "script": content,
            "narrative_goal": f"{ctx.scene.narrative_goal} (enhanced for clarity)".strip(),
            "emotional_beat": f"{ctx.scene.emotional_beat} (strengthened)".strip(),
        }


class DirectorAgent(RoleAgent):
    role = AgentRole.DIRECTOR
    max_tokens = 1500
    temperature = 0.7
    summary = "Director's vision for scene pacing and emotional arc"
    default_rationale = "Director's creative guidance for scene improvement."
    system_prompt = (
        "You are an experienced film director providing creative direction for scenes. "
        "Focus on emotional pacing, dramatic tension, actor blocking, and overall scene "
        "vision. Your role is to shape the emotional journey and ensure the scene "
        "serves the narrative."
    )

    def build_prompt(self, ctx: AgentContext) -> str:
        scene = ctx.scene
        writer_notes = "\n".join(p.summary for p in ctx.prior_for(AgentRole.WRITER))
        return (
            "As the director, analyze this scene and provide your creative vision:\n\n"
            f"Scene: {scene.title} (Scene {scene.number})\n"
            f"Location: {scene.location}\n"
            f"Time: {scene.time_of_day}\n\n"
            f"Current Script:\n{scene.script}\n\n"
            f"Narrative Goal: {scene.narrative_goal}\n"
            f"Emotional Beat: {scene.emotional_beat}\n"
            f"Target Runtime: {scene.runtime_target_seconds} seconds\n"
            f"Characters: {ctx.characters}\n\n"
            f"Writer's Input:\n{writer_notes or 'None'}\n\n"
            "Provide direction on:\n"
            "1. Emotional pacing - how to build and release tension\n"
            "2. Key dramatic moments to emphasize\n"
            "3. Actor blocking suggestions\n"
            "4. Scene rhythm and tempo\n"
            "5. Any adjustments to achieve the narrative goal\n\n"
            "Be specific and actionable in your direction."
        )

    def runtime_impact(self, ctx: AgentContext, content: str) -> int:
        lower = content.lower()
        if "extend" in lower or "longer" in lower:
            return 10
        if "trim" in lower or "shorten" in lower:
            return -5
        return 0

    def build_diff(self, ctx: AgentContext, content: str) -> dict[str, Any]:
        return {
            "director_notes": content,
            "emotional_beat": f"{ctx.scene.emotional_beat} (refined)".strip(),
            "narrative_goal": f"{ctx.scene.narrative_goal} (clarified)".strip(),
        }


class CinematographerAgent(RoleAgent):
    role = AgentRole.CINEMATOGRAPHER
    max_tokens = 2000
    temperature = 0.6
    summary = "Visual storytelling plan with detailed shot list"
    default_rationale = "Visual plan to enhance storytelling through careful shot selection."
    system_prompt = (
        "You are an expert cinematographer creating shot lists and visual plans for "
        "film scenes. Focus on camera angles, movements, lens choices, lighting, and "
        "visual composition. Your goal is to translate the director's vision into "
        "specific, achievable shots."
    )

    def build_prompt(self, ctx: AgentContext) -> str:
        scene = ctx.scene
        director_notes = "\n".join(p.summary for p in ctx.prior_for(AgentRole.DIRECTOR))
        return (
            "Create a detailed shot list for this scene:\n\n"
            f"Scene: {scene.title} (Scene {scene.number})\n"
            f"Location: {scene.location}\n"
            f"Time of Day: {scene.time_of_day}\n"
            f"Target Runtime: {scene.runtime_target_seconds} seconds\n\n"
            f"Script:\n{scene.script}\n\n"
            f"Emotional Beat: {scene.emotional_beat}\n"
            f"Characters: {ctx.characters}\n\n"
            f"Director's Notes:\n{director_notes or 'None'}\n\n"
            "Create a shot list with shot type, duration estimate in seconds, camera "
            "movement, framing and lighting notes.\n\n"
            "Format each shot as:\n"
            "SHOT [number]: [type] | [duration]s | [camera] | [description]"
        )

    @staticmethod
    def parse_shots(content: str) -> list[dict[str, Any]]:
        """Parse ``SHOT n: type | duration | camera | description`` lines."""
        shots: list[dict[str, Any]] = []
        for line in content.splitlines():
            if "shot" not in line.lower() or "|" not in line:
                continue
            parts = [part.strip() for part in line.split("|")]
            if len(parts) < 3:
                continue
            shots.append(
                {
                    "number": len(shots) + 1,
                    "type": _SHOT_PREFIX.sub("", parts[0]).strip(),
                    "duration": parts[1],
                    "camera": parts[2] or "Standard",
                    "description": parts[3] if len(parts) > 3 else "",
                }
            )
        if not shots:
            shots = [
                {
                    "number": 1,
                    "type": "Wide Shot",
                    "duration": "5s",
                    "camera": "Static",
                    "description": "Establishing shot",
                },
                {
                    "number": 2,
                    "type": "Medium Shot",
                    "duration": "8s",
                    "camera": "Slight push",
                    "description": "Character focus",
                },
            ]
        return shots

    def rationale(self, content: str) -> str:
        lines = [
            line.strip()
            for line in content.splitlines()
            if line.strip() and not line.strip().upper().startswith("SHOT")
        ]
        return " ".join(lines[:3]) or self.default_rationale

    def runtime_impact(self, ctx: AgentContext, content: str) -> int:
        return len(self.parse_shots(content)) * 3

    def build_diff(self, ctx: AgentContext, content: str) -> dict[str, Any]:
        return {
            "cinematography_notes": content,
            "suggested_shots": self.parse_shots(content),
            "visual_style": "Standard",
        }


class EditorAgent(RoleAgent):
    role = AgentRole.EDITOR
    max_tokens = 1500
    temperature = 0.5
    summary = "Editing notes for pacing and rhythm optimization"
    default_rationale = "Editing suggestions to optimize scene pacing and flow."
    system_prompt = (
        "You are an expert film editor analyzing scenes for pacing, rhythm, and flow. "
        "Focus on cutting points, scene transitions, timing, and overall narrative "
        "momentum."
    )

    def build_prompt(self, ctx: AgentContext) -> str:
        scene = ctx.scene
        return (
            "Analyze this scene for editing and pacing improvements:\n\n"
            f"Scene: {scene.title} (Scene {scene.number})\n"
            f"Target Runtime: {scene.runtime_target_seconds} seconds\n\n"
            f"Script:\n{scene.script}\n\n"
            f"Emotional Beat: {scene.emotional_beat}\n"
            f"Narrative Goal: {scene.narrative_goal}\n\n"
            f"Previous Agent Suggestions:\n{ctx.prior_summary()}\n\n"
            "Analyze and suggest:\n"
            "1. Pacing adjustments - where to speed up or slow down\n"
            "2. Potential cuts to tighten the scene\n"
            "3. Shot order optimizations\n"
            "4. Transition suggestions between shots\n"
            "5. Runtime optimization to hit target\n\n"
            "Estimate how many seconds can be trimmed or should be added."
        )

    def runtime_impact(self, ctx: AgentContext, content: str) -> int:
        lower = content.lower()
        if "trim" in lower or "cut" in lower or "reduce" in lower:
            if "significantly" in lower or "heavily" in lower:
                return -15
            return -8
        if "extend" in lower or "add" in lower or "expand" in lower:
            return 5
        return -3

    @staticmethod
    def _lines_with(content: str, *words: str) -> list[str]:
        return [
            line.strip()
            for line in content.splitlines()
            if any(word in line.lower() for word in words)
        ][:5]

    def build_diff(self, ctx: AgentContext, content: str) -> dict[str, Any]:
        return {
            "editor_notes": content,
            "pacing_adjustments": self._lines_with(content, "pacing", "rhythm"),
            "suggested_cuts": self._lines_with(content, "cut", "trim"),
            "runtime_adjustment": self.runtime_impact(ctx, content),
        }


class ProducerAgent(RoleAgent):
    role = AgentRole.PRODUCER
    max_tokens = 1000
    temperature = 0.4
    rationale_limit = 500
    system_prompt = (
        "You are an experienced film producer reviewing scenes for production "
        "feasibility. Focus on budget implications, resource requirements, scheduling, "
        "and practical constraints."
    )

    constraints = ("Runtime", "Budget", "Resources", "Continuity")
    cost_threshold = Decimal("0.10")

    def check_constraints(self, ctx: AgentContext) -> dict[str, Any]:
        """Rule checks that need no model call."""
        target = ctx.scene.runtime_target_seconds
        runtime_impact = sum(p.runtime_impact_seconds for p in ctx.prior)
        projected = target + runtime_impact
        runtime_exceeded = target > 0 and projected > target * 1.25
        total_cost = sum((Decimal(p.cost_usd) for p in ctx.prior), Decimal("0"))
        issues: list[str] = []
        if runtime_exceeded:
            over_percent = projected * 100 // target - 100
            issues.append(
                f"Runtime exceeds target by {projected - target}s ({over_percent}% over)"
            )
        if total_cost > self.cost_threshold:
            issues.append(
                f"Agent processing cost (${total_cost:.4f}) exceeds recommended limit"
            )
        return {
            "runtime_impact": runtime_impact,
            "runtime_exceeded": runtime_exceeded,
            "total_cost": total_cost,
            "issues": issues,
        }

    def build_prompt(self, ctx: AgentContext) -> str:
        scene = ctx.scene
        checks = self.check_constraints(ctx)
        proposals = "\n".join(
            f"- {p.role.value}: {p.summary} (runtime impact: "
            f"{p.runtime_impact_seconds}s, cost: ${Decimal(p.cost_usd):.4f})"
            for p in ctx.prior
        )
        return (
            "Review this scene for production feasibility:\n\n"
            f"Scene: {scene.title} (Scene {scene.number})\n"
            f"Location: {scene.location}\n"
            f"Time of Day: {scene.time_of_day}\n"
            f"Target Runtime: {scene.runtime_target_seconds} seconds\n"
            f"Characters Required: {ctx.characters}\n\n"
            "Constraint Check Results:\n"
            f"- Runtime Impact: {checks['runtime_impact']}s "
            f"({'EXCEEDS' if checks['runtime_exceeded'] else 'within'} target)\n"
            f"- Agent Processing Cost: ${checks['total_cost']:.4f}\n"
            f"- Issues Found: {'; '.join(checks['issues']) or 'None'}\n\n"
            f"Previous Agent Proposals:\n{proposals or 'None'}\n\n"
            "Provide a brief production assessment with a feasibility rating (1-10), "
            "key concerns and a final verdict: ready for approval or needs revision?"
        )

    def summarize(self, ctx: AgentContext, content: str) -> str:
        issues = self.check_constraints(ctx)["issues"]
        if issues:
            return f"Production constraints violated: {', '.join(issues)}"
        return "Scene meets all production constraints"

    def build_diff(self, ctx: AgentContext, content: str) -> dict[str, Any]:
        checks = self.check_constraints(ctx)
        return {
            "producer_notes": content,
            "constraints_checked": list(self.constraints),
            "status": "Violations" if checks["issues"] else "Compliant",
            "issues": checks["issues"],
            "runtime_analysis": {
                "target_seconds": ctx.scene.runtime_target_seconds,
                "proposed_impact": checks["runtime_impact"],
                "within_budget": not checks["runtime_exceeded"],
            },
            "ready_for_approval": not checks["issues"],
        }


class ShowrunnerAgent(RoleAgent):
    role = AgentRole.SHOWRUNNER
    max_tokens = 2000
    temperature = 0.6
    rationale_limit = 800
    system_prompt = (
        "You are an experienced showrunner reviewing a short film project for "
        "consistency and quality. Focus on cross-scene continuity, character arc "
        "consistency, tone coherence, and overall narrative flow."
    )

    def build_prompt(self, ctx: AgentContext) -> str:
        scene = ctx.scene
        return (
            "As the Showrunner, review this scene for consistency:\n\n"
            f"Scene: {scene.title} (Scene {scene.number})\n"
            f"Location: {scene.location}\n"
            f"Time: {scene.time_of_day}\n"
            f"Narrative Goal: {scene.narrative_goal}\n"
            f"Emotional Beat: {scene.emotional_beat}\n\n"
            f"Script:\n{scene.script}\n\n"
            f"Characters in Scene: {ctx.characters}\n\n"
            f"AGENT PROPOSALS FOR THIS SCENE:\n{ctx.prior_summary()}\n\n"
            "Review for continuity, character consistency, tone coherence, narrative "
            "flow and visual consistency. Identify any issues and rate the scene's "
            "integration on a scale of 1-10."
        )

    @staticmethod
    def extract_issues(content: str) -> list[str]:
        issues = []
        for line in content.splitlines():
            trimmed = line.strip()
            if any(word in trimmed.lower() for word in _ISSUE_WORDS) and 10 < len(trimmed) < 200:
                issues.append(trimmed)
        return issues[:5]

    @staticmethod
    def integration_score(content: str) -> int:
        lower = content.lower()
        for score in range(10, 0, -1):
            if any(
                marker in lower
                for marker in (
                    f"{score}/10",
                    f"{score} out of 10",
                    f"score: {score}",
                    f"rating: {score}",
                )
            ):
                return score
        negative = sum(
            word in lower
            for word in ("issue", "problem", "inconsistent", "conflict", "concern", "break")
        )
        positive = sum(
            word in lower
            for word in ("consistent", "cohesive", "well-integrated", "excellent", "good")
        )
        return max(1, min(10, 7 + positive - negative))

    def summarize(self, ctx: AgentContext, content: str) -> str:
        issues = self.extract_issues(content)
        if issues:
            return f"Continuity review: {len(issues)} issue(s) found"
        return "Continuity review: Scene integrates well"

    def build_diff(self, ctx: AgentContext, content: str) -> dict[str, Any]:
        issues = self.extract_issues(content)
        return {
            "showrunner_notes": content,
            "continuity_issues": issues,
            "overall_assessment": "NeedsRevision" if issues else "Approved",
            "integration_score": self.integration_score(content),
        }


ROLE_AGENTS: dict[AgentRole, type[RoleAgent]] = {
    agent.role: agent
    for agent in (
        WriterAgent,
        DirectorAgent,
        CinematographerAgent,
        EditorAgent,
        ProducerAgent,
        ShowrunnerAgent,
    )
}


def default_agents() -> dict[AgentRole, RoleAgent]:
    """One instance of every role, in pipeline order."""
    return {role: ROLE_AGENTS[role]() for role in ROLE_SEQUENCE}


__all__ = [
    "WriterAgent",
    "DirectorAgent",
    "CinematographerAgent",
    "EditorAgent",
    "ProducerAgent",
    "ShowrunnerAgent",
    "ROLE_AGENTS",
    "default_agents",
]
