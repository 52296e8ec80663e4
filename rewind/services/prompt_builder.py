import re
from typing import Dict, Any


SOLUTION_TEMPLATE = """You are an expert DSA interview coach reviewing a candidate's solution.

Problem: {{title}}
Pattern: {{pattern}}
Difficulty: {{difficulty}}
Language: {{language}}

Solution:
```{{language}}
{{code}}
```

Reply briefly and encouragingly with:
1. One thing the solution does well
2. One concrete improvement (complexity, edge cases or readability)
3. The time and space complexity

Stay under 150 words."""

REFLECTION_TEMPLATE = """You are a Socratic DSA tutor. Ask ONE reflection question about this problem.

Problem: {{title}}
Pattern: {{pattern}}

The question should make the learner link this problem to similar ones, notice when the pattern applies, or name the key insight.
Be specific to this problem and stay under 30 words."""

COMMUNICATION_TEMPLATE = """You are an interview communication coach. Review how the candidate explained their solution out loud.

Problem: {{title}}

Transcript:
{{transcript}}

Give specific tips to make this explanation land in a FAANG interview: clarity, structure, pacing, technical vocabulary.
Be strict but constructive and stay under 100 words."""


class PromptBuilder:
    """
    Builds critique prompts for the AI coach.

    solution -> HINT, reflection -> REFLECTION_QUESTION, communication -> COMMUNICATION_TIP
    """

    @staticmethod
    def replace_placeholders(template: str, variables: Dict[str, Any]) -> str:
        """Replace {{variable}} placeholders in template."""
        def replacer(match):
            value = variables.get(match.group(1), "")
            return str(value) if value is not None else ""

        return re.sub(r'\{\{(\w+)\}\}', replacer, template)

    @classmethod
    def build_solution_prompt(
        cls, title: str, pattern: str, difficulty: str, language: str, code: str
    ) -> str:
        return cls.replace_placeholders(SOLUTION_TEMPLATE, {
            "title": title,
            "pattern": pattern,
            "difficulty": difficulty,
            "language": language,
            "code": code,
        })

    @classmethod
    def build_reflection_prompt(cls, title: str, pattern: str) -> str:
        return cls.replace_placeholders(REFLECTION_TEMPLATE, {"title": title, "pattern": pattern})

    @classmethod
    def build_communication_prompt(cls, title: str, transcript: str) -> str:
        return cls.replace_placeholders(COMMUNICATION_TEMPLATE, {"title": title, "transcript": transcript})
