"""
Answer Grading Service

LLM-powered evaluation of a learner's free-text explanation of how they
would solve a practice problem. Produces the 0-5 quality score consumed by
the interval engine, plus structured feedback.

Unlike a self-rated "flip" card, the learner explains the approach and the
grader scores:
- Overall understanding (0-5, the scheduling score)
- Sub-scores: pattern recognition, algorithmic correctness, complexity
  understanding and edge case awareness
- Feedback and a solution breakdown with a one-line correct approach

Score Guide:
- 5: Perfect understanding
- 4: Strong understanding, minor gaps
- 3: Acceptable, some conceptual gaps
- 2: Weak, flawed approach
- 1: Poor, incorrect approach
- 0: No understanding
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from pattern_recall.config import settings
from pattern_recall.middleware.error_handling import GradingError
from pattern_recall.services.learning.sm2 import clamp_score
from pattern_recall.services.llm.client import LLMClient, build_messages

logger = logging.getLogger(__name__)


GRADING_SYSTEM_PROMPT = (
    "You are an expert algorithm tutor. You provide structured feedback in "
    "JSON format to help students master problem-solving patterns."
)

GRADING_PROMPT = """You are evaluating a student's understanding of algorithm problem-solving.

**Problem:** {title}

**Problem Description:**
{description}

**Student's Explanation:**
{answer}

---

Evaluate the student's understanding and return a JSON object:
{{
    "score": <0-5>,
    "sub_scores": {{
        "pattern_recognition": <0-5>,
        "algorithmic_correctness": <0-5>,
        "complexity_understanding": <0-5>,
        "edge_case_awareness": <0-5>
    }},
    "feedback": "2-4 paragraphs: what they got right, what they missed, how to improve",
    "solution": {{
        "pattern": "<pattern name>",
        "why_this_pattern": "<explanation>",
        "approach_steps": ["<step 1>", "<step 2>"],
        "pseudocode": "<clean pseudocode>",
        "time_complexity": "<e.g. O(n)>",
        "space_complexity": "<e.g. O(1)>",
        "key_insights": ["<insight>"],
        "common_pitfalls": ["<pitfall>"],
        "correct_approach": "<1-2 sentence summary>"
    }}
}}

Score Guide (0-5):
- 5: Perfect understanding
- 4: Strong understanding, minor gaps
- 3: Acceptable, some conceptual gaps
- 2: Weak, flawed approach
- 1: Poor, incorrect approach
- 0: No understanding

Respond with ONLY valid JSON.
"""

SUB_SCORE_KEYS = (
    "pattern_recognition",
    "algorithmic_correctness",
    "complexity_understanding",
    "edge_case_awareness",
)


@dataclass
class GradeResult:
    """Outcome of grading one answer. `score` is always within 0-5."""

    score: int
    feedback: str = ""
    correct_approach: str = ""
    sub_scores: dict[str, int] = field(default_factory=dict)
    solution: dict[str, Any] = field(default_factory=dict)


class AnswerGrader:
    """
    LLM-backed grading collaborator.

    Any provider failure, unparseable output or missing score surfaces as
    GradingError so the caller can leave the card untouched.
    """

    def __init__(
        self,
        llm_client: LLMClient,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ):
        """
        Initialize the answer grader.

        Args:
            llm_client: Configured LLM client instance
            model: Model identifier (defaults to GRADING_MODEL)
            temperature: Sampling temperature (defaults to GRADING_TEMPERATURE)
            max_tokens: Response budget (defaults to GRADING_MAX_TOKENS)
        """
        self.llm = llm_client
        self.model = model or settings.GRADING_MODEL
        self.temperature = (
            temperature if temperature is not None else settings.GRADING_TEMPERATURE
        )
        self.max_tokens = max_tokens or settings.GRADING_MAX_TOKENS

    async def grade(self, title: str, description: str, answer: str) -> GradeResult:
        """
        Grade a learner's explanation for a problem.

        Args:
            title: Problem title
            description: Problem statement (markdown)
            answer: The learner's explanation

        Returns:
            GradeResult with a clamped score

        Raises:
            GradingError: If the LLM call fails or its output is unusable
        """
        # Empty answers score 0 without a provider round trip
        if not answer or not answer.strip():
            return GradeResult(score=0, feedback="No answer was provided.")

        prompt = GRADING_PROMPT.format(
            title=title,
            description=description or "",
            answer=answer,
        )

        try:
            response, _usage = await self.llm.complete(
                messages=build_messages(prompt, system_prompt=GRADING_SYSTEM_PROMPT),
                model=self.model,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                json_mode=True,
            )
        except Exception as e:
            logger.error(f"Answer grading failed: {e}")
            raise GradingError(f"Answer grading failed: {e}") from e

        return parse_grade(response)


def parse_grade(response: Any) -> GradeResult:
    """
    Normalize a grader response into a GradeResult.

    Accepts a parsed dict or a JSON string (optionally wrapped in a
    ```json fence). Scores are clamped to 0-5.

    Raises:
        GradingError: If the payload is not a JSON object with a numeric score
    """
    if isinstance(response, str):
        cleaned = response.strip()
        if cleaned.startswith("```json"):
            cleaned = cleaned[len("```json"):]
        if cleaned.endswith("```"):
            cleaned = cleaned[:-3]
        try:
            response = json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise GradingError(f"Grader returned invalid JSON: {e}") from e

    if not isinstance(response, dict):
        raise GradingError("Grader returned a non-object payload")

    raw_score = response.get("score")
    if isinstance(raw_score, bool) or not isinstance(raw_score, (int, float)):
        raise GradingError("Grader response is missing a numeric score")

    solution = response.get("solution") or {}
    if not isinstance(solution, dict):
        solution = {}

    raw_sub_scores = response.get("sub_scores") or {}
    sub_scores = {}
    if isinstance(raw_sub_scores, dict):
        for key in SUB_SCORE_KEYS:
            value = raw_sub_scores.get(key)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                sub_scores[key] = clamp_score(value)

    return GradeResult(
        score=clamp_score(raw_score),
        feedback=str(response.get("feedback") or ""),
        correct_approach=str(solution.get("correct_approach") or ""),
        sub_scores=sub_scores,
        solution=solution,
    )
