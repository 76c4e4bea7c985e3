"""Prompt templating for rule generation and evaluation.

Prompts are Jinja2 templates rendered with StrictUndefined, so a missing
variable fails loudly instead of silently producing an empty section.
"""

from __future__ import annotations

from typing import Any

import jinja2

from rulelearner.core.models import CandidateRule, Category, LearningContext

GENERATION_TEMPLATE = """\
You are a senior {{ database_type }} database auditor. Derive reusable audit
rules from the SQL analysis below.

## SQL
```sql
{{ sql }}
```

## Analysis
{% for section in sections %}
### {{ section.category }}
Summary: {{ section.summary or "none" }}
{% for issue in section.issues %}
- [{{ issue.severity }}] {{ issue.type }}: {{ issue.description }}
{% else %}
- no issues
{% endfor %}
{% endfor %}

Write at most {{ max_rules }} general rules that would catch the issues above
in other queries. Do not describe this specific query.

Reply with JSON only, in this shape:
{"rules": [{"title": "...", "description": "...",
  "category": "performance|security|standards", "type": "...",
  "severity": "critical|high|medium|low|info", "condition": "...",
  "example": "SQL example", "sqlPattern": "optional regex",
  "confidence": 0.0}]}
"""

DEEP_LEARNING_TEMPLATE = """\
You are refining the audit rule corpus for {{ database_type }}. A first pass
produced no usable rules, so consider the wider context before answering.

## Current SQL
```sql
{{ sql }}
```

## Recurring issue patterns
{% for pattern in patterns %}
- {{ pattern.category }} / {{ pattern.type }} ({{ pattern.severity }}): {{ pattern.description }}
{% else %}
- none recorded
{% endfor %}

## Similar historical queries ({{ similar | length }})
{% for record in similar %}
- `{{ record.sql }}` ({{ record.issue_count }} issues)
{% endfor %}

Identify the underlying anti-patterns shared by these queries and express
each as a general, checkable rule. Give at most {{ max_rules }} rules.

Reply with JSON only: {"new_rules": [{"title": "...", "description": "...",
  "category": "performance|security|standards", "type": "...",
  "severity": "critical|high|medium|low|info", "condition": "...",
  "example": "SQL example", "confidence": 0.0}]}
"""

EVALUATION_TEMPLATE = """\
Evaluate the quality of this SQL audit rule.

**规则类别**: {{ rule.category }}
**规则类型**: {{ rule.type }}
**严重程度**: {{ rule.severity }}
**置信度**: {{ rule.confidence }}

Title: {{ rule.title }}
Description: {{ rule.description }}
Condition: {{ rule.condition }}
Example:
```sql
{{ rule.example }}
```

Source SQL ({{ database_type }}):
```sql
{{ sql }}
```

Score each dimension from 0 to 100: accuracy, completeness, practicality,
generality, consistency.

Reply with JSON only:
{"score": 0, "level": "excellent|good|fair|poor",
 "dimensionScores": {"accuracy": 0, "completeness": 0, "practicality": 0,
 "generality": 0, "consistency": 0},
 "strengths": ["..."], "issues": ["..."], "shouldKeep": true,
 "summary": "one sentence"}
"""


class PromptBuilder:
    """Renders the generation, deep-learning and evaluation prompts."""

    def __init__(self, jinja_env: jinja2.Environment | None = None) -> None:
        self.env = jinja_env or jinja2.Environment(
            undefined=jinja2.StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._generation = self.env.from_string(GENERATION_TEMPLATE)
        self._deep_learning = self.env.from_string(DEEP_LEARNING_TEMPLATE)
        self._evaluation = self.env.from_string(EVALUATION_TEMPLATE)

    def build_generation_prompt(self, context: LearningContext, max_rules: int) -> str:
        sections: list[dict[str, Any]] = []
        for category in Category:
            dimension = context.analysis.get(category)
            if dimension is None:
                continue
            sections.append({
                "category": category.value,
                "summary": dimension.summary,
                "issues": [issue.to_dict() for issue in dimension.issues],
            })
        return self._generation.render(
            database_type=context.database_type,
            sql=context.sql,
            sections=sections,
            max_rules=max_rules,
        )

    def build_deep_learning_prompt(self, context: LearningContext, max_rules: int) -> str:
        patterns = [
            {"category": category.value, **issue.to_dict()}
            for category, issue in context.all_patterns()
        ]
        similar = [
            {"sql": record.sql, "issue_count": len(record.issues())}
            for record in context.similar_records
        ]
        return self._deep_learning.render(
            database_type=context.database_type,
            sql=context.sql,
            patterns=patterns,
            similar=similar,
            max_rules=max_rules,
        )

    def build_evaluation_prompt(self, rule: CandidateRule, context: LearningContext) -> str:
        return self._evaluation.render(
            rule=rule.to_dict(),
            sql=context.sql,
            database_type=context.database_type,
        )
