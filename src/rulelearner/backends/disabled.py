"""Text generator that never produces text.

Used when no LLM is configured: every call fails immediately, so the
generator falls back to its deterministic templates and the evaluator to
its neutral score.
"""

from __future__ import annotations

from rulelearner.backends.base import GenerationResult, TextGenerator


class DisabledTextGenerator(TextGenerator):
    @property
    def name(self) -> str:
        return "disabled"

    async def generate(self, prompt: str) -> GenerationResult:
        return GenerationResult(
            success=False,
            error="Text generation is disabled",
            error_type="disabled",
        )

    async def health_check(self) -> bool:
        return False
