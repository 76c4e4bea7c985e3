"""Markdown rule files.

Rule files are the on-disk protocol shared with other tooling. Their
labelled fields (``**规则类别**`` and friends) are parsed back by regex, so
the rendered layout must stay byte-compatible. Files are written once,
atomically, and never edited in place.

Layout::

    <root>/<approved|manual_review|issues>/<YYYY-MM>/<title>-<timestamp>-<id>.md
"""

from __future__ import annotations

import os
import re
import tempfile
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import jinja2

from rulelearner.core.errors import RuleStorageError
from rulelearner.core.logging import get_logger
from rulelearner.core.models import CandidateRule, Category, LearningContext, coerce_category
from rulelearner.learning.lifecycle import STATE_DIRECTORIES, RuleState

_logger = get_logger("storage")

ALLOWED_DIRECTORIES = frozenset({"approved", "performance", "security", "standards"})
EXCLUDED_DIRECTORIES = frozenset(
    {"issues", "manual_review", "rejected", "raw-data", "temp", "backup"}
)
_MONTH_DIRECTORY = re.compile(r"^\d{4}-\d{2}$")

_TITLE_RE = re.compile(r"^#\s+(.+)$", re.MULTILINE)
_ID_RE = re.compile(r"\*\*规则ID\*\*:\s*(.+)$", re.MULTILINE)
_CATEGORY_RE = re.compile(r"\*\*规则类别\*\*:\s*(.+)$", re.MULTILINE)
_TYPE_RE = re.compile(r"\*\*规则类型\*\*:\s*(.+)$", re.MULTILINE)
_SEVERITY_RE = re.compile(r"\*\*严重程度\*\*:\s*(.+)$", re.MULTILINE)
_SQL_PATTERN_RE = re.compile(r"\*\*SQL模式\*\*:\s*(.+)$", re.MULTILINE)
_DESCRIPTION_RE = re.compile(r"##\s*规则描述\s*\n\n(.+?)(?=\n##|\n---|\n\*\*)", re.DOTALL)
_UNSAFE_TITLE_CHARS = re.compile(r"[^a-zA-Z0-9\u4e00-\u9fa5]")

RULE_TEMPLATE = """\
# {{ rule.title }}

**{{ time_label }}**: {{ written_at }}
**规则ID**: {{ rule.id }}
**规则类别**: {{ rule.category }}
**规则类型**: {{ rule.type }}
**严重程度**: {{ rule.severity }}
**置信度**: {{ rule.confidence }}
{% if rule.sqlPattern %}
**SQL模式**: {{ rule.sqlPattern }}
{% endif %}

## 规则描述

{{ rule.description }}

## 触发条件

{{ rule.condition }}

## 示例代码

```sql
{{ rule.example }}
```

## 质量评估

{% if evaluation %}
- **质量分数**: {{ evaluation.combined_score }}
- **质量等级**: {{ evaluation.quality_level }}
- **是否建议保留**: {{ "是" if evaluation.should_keep else "否" }}
- **评估摘要**: {{ evaluation.summary or "无" }}

### 评估维度

{% for name, score in evaluation.dimension_scores.items() %}
- **{{ name }}**: {{ score }}
{% else %}
无详细维度评分
{% endfor %}

### 优势

{% for item in evaluation.strengths %}
- {{ item }}
{% else %}
无特别优势
{% endfor %}

### 改进建议

{% for item in evaluation.issues %}
- {{ item }}
{% else %}
无改进建议
{% endfor %}
{% else %}
未评估
{% endif %}
{% if state == "manual_review" %}

## 需要人工审核的原因

{{ reasons }}

## 审核建议

请审核以下方面：
1. 规则的准确性和实用性
2. 触发条件的合理性
3. 示例代码的正确性
4. 严重程度的适当性
{% elif state == "rejected" %}

## 拒绝原因

{{ reasons }}
{% endif %}

## 原始分析上下文

**SQL查询**: ```sql
{{ sql }}
```
**数据库类型**: {{ database_type }}
**生成时间**: {{ generated_at }}

---

*{{ footer }}*
"""

_FOOTERS = {
    RuleState.APPROVED: "此规则由智能规则学习器自动生成并审批",
    RuleState.MANUAL_REVIEW: "此规则由智能规则学习器生成，等待人工审核",
    RuleState.REJECTED: "此规则由智能规则学习器生成，未通过质量评估",
}


def should_include_directory(name: str) -> bool:
    """Whether the duplicate corpus loader should descend into ``name``.

    Published rule directories and ``YYYY-MM`` month folders are included;
    review, reject and scratch directories are not.
    """
    if name.startswith(".") or name in EXCLUDED_DIRECTORIES:
        return False
    return name in ALLOWED_DIRECTORIES or bool(_MONTH_DIRECTORY.match(name))


def get_filter_stats(root: Path) -> dict[str, Any]:
    """Report which top-level directories under ``root`` the filter keeps."""
    included: list[str] = []
    excluded: list[str] = []
    if root.is_dir():
        for child in sorted(root.iterdir()):
            if child.is_dir():
                (included if should_include_directory(child.name) else excluded).append(
                    child.name
                )
    return {
        "root": str(root),
        "included": included,
        "excluded": excluded,
        "allowed_directories": sorted(ALLOWED_DIRECTORIES),
        "excluded_directories": sorted(EXCLUDED_DIRECTORIES),
    }


@dataclass(frozen=True)
class StoredRule:
    """Fields recovered from a rule file."""

    title: str
    category: Category | None
    type: str = ""
    severity: str = ""
    description: str = ""
    sql_pattern: str | None = None
    rule_id: str | None = None
    file_path: str | None = None

    @classmethod
    def from_candidate(cls, rule: CandidateRule, file_path: str | None = None) -> StoredRule:
        return cls(
            title=rule.title,
            category=rule.category,
            type=rule.type,
            severity=rule.severity.value,
            description=rule.description,
            sql_pattern=rule.sql_pattern,
            rule_id=rule.id,
            file_path=file_path,
        )


def _match(pattern: re.Pattern[str], content: str) -> str:
    found = pattern.search(content)
    return found.group(1).strip() if found else ""


def parse_rule_markdown(content: str, file_path: str | None = None) -> StoredRule | None:
    """Extract the labelled fields of a rule file; None when it has no title."""
    title = _match(_TITLE_RE, content)
    if not title:
        return None
    return StoredRule(
        title=title,
        category=coerce_category(_match(_CATEGORY_RE, content)),
        type=_match(_TYPE_RE, content),
        severity=_match(_SEVERITY_RE, content),
        description=_match(_DESCRIPTION_RE, content),
        sql_pattern=_match(_SQL_PATTERN_RE, content) or None,
        rule_id=_match(_ID_RE, content) or None,
        file_path=file_path,
    )


def safe_title(title: str) -> str:
    return _UNSAFE_TITLE_CHARS.sub("-", title)[:50]


def rule_file_name(rule: CandidateRule, now: datetime) -> str:
    timestamp = now.isoformat(timespec="milliseconds").replace(":", "-").replace(".", "-")
    return f"{safe_title(rule.title)}-{timestamp}-{rule.id[:8]}.md"


class RuleFileStore:
    """Writes rule files by lifecycle state and reads the published corpus."""

    def __init__(
        self,
        root_dir: Path,
        organize_by_month: bool = True,
        jinja_env: jinja2.Environment | None = None,
    ) -> None:
        self.root_dir = root_dir
        self.organize_by_month = organize_by_month
        env = jinja_env or jinja2.Environment(
            undefined=jinja2.StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._template = env.from_string(RULE_TEMPLATE)

    def directory_for(self, state: RuleState, now: datetime) -> Path:
        try:
            directory = self.root_dir / STATE_DIRECTORIES[state]
        except KeyError:
            raise RuleStorageError(f"State {state.value} is not persisted") from None
        if self.organize_by_month:
            directory = directory / now.strftime("%Y-%m")
        return directory

    def render(
        self,
        rule: CandidateRule,
        state: RuleState,
        context: LearningContext,
        reasons: str = "",
        now: datetime | None = None,
    ) -> str:
        written_at = (now or datetime.now(UTC)).isoformat()
        evaluation = None
        if rule.evaluation is not None:
            evaluation = {
                "combined_score": rule.evaluation.combined_score,
                "quality_level": rule.evaluation.quality_level.value,
                "should_keep": rule.evaluation.should_keep,
                "summary": rule.evaluation.summary,
                "dimension_scores": rule.evaluation.dimension_scores,
                "strengths": rule.evaluation.strengths,
                "issues": rule.evaluation.issues,
            }
        return self._template.render(
            rule=rule.to_dict(),
            evaluation=evaluation,
            state=state.value,
            time_label="自动审批时间" if state is RuleState.APPROVED else "提交时间",
            written_at=written_at,
            reasons=reasons or "无",
            sql=context.sql,
            database_type=context.database_type,
            generated_at=context.timestamp,
            footer=_FOOTERS.get(state, ""),
        )

    async def write(
        self,
        rule: CandidateRule,
        state: RuleState,
        context: LearningContext,
        reasons: str = "",
        now: datetime | None = None,
    ) -> Path:
        """Write a rule file atomically.

        Returns:
            Path of the written file.

        Raises:
            RuleStorageError: If the state is not persisted, the target already
                exists, or the filesystem write fails.
        """
        now = now or datetime.now(UTC)
        directory = self.directory_for(state, now)
        target = directory / rule_file_name(rule, now)
        content = self.render(rule, state, context, reasons, now)

        temp_path: Path | None = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=directory,
                suffix=".tmp",
                delete=False,
            ) as f:
                temp_path = Path(f.name)
                f.write(content)
            # never replaces an existing file
            try:
                os.link(temp_path, target)
            except FileExistsError as e:
                raise RuleStorageError(f"Rule file already exists: {target}") from e
        except OSError as e:
            raise RuleStorageError(f"Failed to write rule file {target}: {e}") from e
        finally:
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)

        _logger.info("rule_file_written", path=str(target), state=state.value)
        return target

    def iter_rule_files(self) -> Iterator[Path]:
        """Yield published rule files, skipping filtered directories."""
        if not self.root_dir.is_dir():
            return
        pending = [self.root_dir]
        while pending:
            directory = pending.pop()
            for child in sorted(directory.iterdir()):
                if child.is_dir():
                    if should_include_directory(child.name):
                        pending.append(child)
                elif child.suffix == ".md":
                    yield child

    def load_rules(self) -> list[StoredRule]:
        """Parse every published rule file; unreadable files are logged and skipped."""
        rules: list[StoredRule] = []
        for path in self.iter_rule_files():
            try:
                content = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                _logger.warning("rule_file_unreadable", path=str(path), error=str(e))
                continue
            parsed = parse_rule_markdown(content, file_path=str(path))
            if parsed is not None:
                rules.append(parsed)
        return rules
