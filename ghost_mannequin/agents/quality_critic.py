"""Vision critic that checks a render against the directive's hard constraints."""

from pydantic import ValidationError

from ..errors import SchemaError
from ..models.facts import RenderDirective
from ..models.quality import QualityReport
from .base import VisionAgent


CRITIC_PROMPT = """You are a strict QA reviewer for ghost mannequin product photos.

You get a rendered image and the list of hard constraints it must satisfy.
Only report violations of those constraints, never taste.

Return ONLY a JSON object:
{
  "passed": true,
  "score": 0.0,
  "violations": [
    {"constraint": "background | label | hollow | detail | ban", "detail": "what you see",
     "correction": "one imperative sentence for the next render"}
  ]
}"""


def describe_constraints(directive: RenderDirective) -> str:
    lines = [f"- background must be solid {directive.background_hex}"]
    lines += [f"- {rule}" for rule in directive.must]
    lines += [f"- must not contain: {item}" for item in directive.ban]
    for text in directive.must_preserve_labels:
        lines.append(f'- label text "{text}" must be legible')
    lines += [f"- keep visible: {detail}" for detail in directive.critical_details]
    if directive.interior_render:
        lines.append(f"- openings stay hollow: {', '.join(directive.hollow_regions) or 'all'}")
    return "\n".join(lines)


class QualityCritic(VisionAgent):
    """Verifier backed by a vision model."""

    name = "critic"
    agent_name = "GhostQualityCritic"
    instructions = CRITIC_PROMPT

    async def verify(self, image_ref: str, directive: RenderDirective) -> QualityReport:
        data = await self._ask_json(
            f"Hard constraints:\n{describe_constraints(directive)}\n\nReview this render:",
            [image_ref],
        )
        data.setdefault("verifier", self.name)
        try:
            score = float(data.get("score", 1.0))
        except (TypeError, ValueError):
            score = 1.0
        data["score"] = max(0.0, min(1.0, score))
        try:
            report = QualityReport.model_validate(data)
        except ValidationError as e:
            raise SchemaError(f"critic report did not validate: {e.error_count()} errors") from e

        # A report that lists violations can't pass
        if report.violations and report.passed:
            report = report.model_copy(update={"passed": False})
        return report
