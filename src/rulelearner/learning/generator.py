"""Candidate rule generation.

Generation runs in three tiers: the primary prompt, a broader "deep
learning" prompt, and finally a deterministic template generator keyed on
known issue signatures. The fallback guarantees that an LLM outage never
silently yields zero rules.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from rulelearner.backends.base import TextGenerator, generate_with_timeout
from rulelearner.core.config import GenerationConfig
from rulelearner.core.logging import get_logger
from rulelearner.core.models import (
    AnalysisIssue,
    CandidateRule,
    Category,
    LearningContext,
    Severity,
)
from rulelearner.learning.json_extract import extract_json
from rulelearner.learning.monitor import LearningMonitor
from rulelearner.prompts import PromptBuilder

_logger = get_logger("generator")

# Containers a model may wrap its rule list in, checked in order
RULE_CONTAINERS = ("rules", "new_rules", "learnedRules")


@dataclass(frozen=True)
class FallbackTemplate:
    """A fixed rule emitted when an issue matches one of ``signatures``."""

    category: Category
    signatures: tuple[str, ...]
    title: str
    description: str
    type: str
    condition: str
    confidence: float
    sql_pattern: str | None = None

    def matches(self, category: Category, issue: AnalysisIssue) -> bool:
        if category is not self.category:
            return False
        haystack = f"{issue.type} {issue.description}".lower()
        return any(signature in haystack for signature in self.signatures)

    def build(self, issue: AnalysisIssue, sql: str) -> CandidateRule:
        return CandidateRule(
            title=self.title,
            description=self.description,
            category=self.category,
            type=self.type,
            severity=issue.severity,
            condition=self.condition,
            example=sql,
            confidence=self.confidence,
            sql_pattern=self.sql_pattern,
            source="fallback",
        )


FALLBACK_TEMPLATES: tuple[FallbackTemplate, ...] = (
    FallbackTemplate(
        category=Category.PERFORMANCE,
        signatures=("select_star", "select *", "select-star"),
        title="避免使用SELECT *进行查询",
        description="使用SELECT *会返回所有列，增加网络传输和内存开销，应只查询需要的字段",
        type="select_star",
        condition="检测到SELECT *语句从表中读取全部列",
        confidence=0.7,
        sql_pattern=r"SELECT\s+\*",
    ),
    FallbackTemplate(
        category=Category.PERFORMANCE,
        signatures=("missing_index", "index", "索引"),
        title="为查询条件添加合适索引",
        description="为WHERE条件和JOIN关联中的字段添加索引可以显著提升查询性能",
        type="missing_index",
        condition="检测到WHERE或JOIN条件字段缺少可用索引",
        confidence=0.7,
    ),
    FallbackTemplate(
        category=Category.SECURITY,
        signatures=("injection", "注入", "concat", "拼接"),
        title="使用参数化查询防止SQL注入",
        description="将用户输入作为参数传递，而不是字符串拼接，防止SQL注入攻击",
        type="sql_injection",
        condition="检测到SQL语句通过字符串拼接嵌入外部输入",
        confidence=0.7,
        sql_pattern=r"'\s*\+|\|\|\s*'|CONCAT\s*\(",
    ),
    FallbackTemplate(
        category=Category.SECURITY,
        signatures=("privilege", "permission", "grant", "权限"),
        title="实施最小权限原则",
        description="数据库用户应该只拥有执行其任务所需的最小权限，避免授予过宽的访问权限",
        type="privilege_control",
        condition="检测到GRANT ALL或超出业务需要的权限配置",
        confidence=0.65,
        sql_pattern=r"GRANT\s+ALL",
    ),
    FallbackTemplate(
        category=Category.STANDARDS,
        signatures=("select_star", "select *", "wildcard", "通配符"),
        title="明确指定查询字段而非使用通配符",
        description="应明确指定需要的字段而非使用SELECT *通配符，提高查询性能和代码可维护性",
        type="explicit_columns",
        condition="检测到查询中使用SELECT *通配符",
        confidence=0.6,
        sql_pattern=r"SELECT\s+\*",
    ),
    FallbackTemplate(
        category=Category.STANDARDS,
        signatures=("format", "格式", "indent", "缩进"),
        title="遵循SQL代码格式化规范",
        description="SQL语句应该有适当的缩进、换行和关键字大写，提高可读性和可维护性",
        type="formatting",
        condition="检测到SQL关键字大小写或缩进不一致",
        confidence=0.55,
    ),
)

GENERIC_TEMPLATE = FallbackTemplate(
    category=Category.PERFORMANCE,
    signatures=(),
    title="SQL查询需要进一步优化",
    description="基于分析结果，此SQL查询存在优化空间，建议进一步分析执行计划并优化",
    type="general_optimization",
    condition="检测到SQL查询存在未归类的性能问题",
    confidence=0.5,
)


def dedupe_rules(rules: Iterable[CandidateRule]) -> list[CandidateRule]:
    """Drop rules whose (category, type, title) key was already seen.

    The first occurrence wins, preserving input order.
    """
    seen: set[tuple[str, str, str]] = set()
    unique: list[CandidateRule] = []
    for rule in rules:
        if rule.dedup_key in seen:
            continue
        seen.add(rule.dedup_key)
        unique.append(rule)
    return unique


def find_rule_list(value: Any) -> list[Any]:
    """Locate the list of rule objects inside a decoded model reply."""
    if isinstance(value, list):
        return value
    if not isinstance(value, Mapping):
        return []
    for key in RULE_CONTAINERS:
        if isinstance(value.get(key), list):
            return value[key]
    nested = value.get("data")
    if isinstance(nested, (Mapping, list)):
        return find_rule_list(nested)
    return []


@dataclass
class GenerationMetrics:
    total_generations: int = 0
    successful_generations: int = 0
    failed_generations: int = 0
    fallback_generations: int = 0
    total_rules: int = 0
    confidence_sum: float = 0.0


class RuleGenerator:
    """Turns a learning context into candidate rules."""

    def __init__(
        self,
        generator: TextGenerator,
        config: GenerationConfig | None = None,
        prompts: PromptBuilder | None = None,
        timeout_seconds: float = 60.0,
        monitor: LearningMonitor | None = None,
    ) -> None:
        """Initialize the rule generator.

        Args:
            generator: Text-generation collaborator.
            config: Generation limits and confidence clamp.
            prompts: Prompt builder; a default one is created if omitted.
            timeout_seconds: Timeout for each generator call.
            monitor: Optional metrics sink.
        """
        self.generator = generator
        self.config = config or GenerationConfig()
        self.prompts = prompts or PromptBuilder()
        self.timeout_seconds = timeout_seconds
        self.monitor = monitor
        self._metrics = GenerationMetrics()
        self._category_counts: Counter[str] = Counter()

    async def generate(self, context: LearningContext) -> list[CandidateRule]:
        """Generate deduplicated candidate rules for a context.

        Never raises for generator failures; falls through the tiers instead.
        """
        self._metrics.total_generations += 1
        max_rules = self.config.max_rules_per_learning

        prompt = self.prompts.build_generation_prompt(context, max_rules)
        rules = await self._generate_from_prompt(prompt, source="llm")

        if not rules and self.config.enable_deep_learning:
            _logger.info("primary_generation_empty", sql_length=len(context.sql))
            prompt = self.prompts.build_deep_learning_prompt(context, max_rules)
            rules = await self._generate_from_prompt(prompt, source="deep_learning")

        used_fallback = not rules
        if used_fallback:
            self._metrics.fallback_generations += 1
            rules = self.generate_fallback_rules(context)
            _logger.warning("using_fallback_rules", count=len(rules))

        rules = dedupe_rules(rules)[:max_rules]

        if rules:
            self._metrics.successful_generations += 1
        else:
            self._metrics.failed_generations += 1
        self._metrics.total_rules += len(rules)
        for rule in rules:
            self._metrics.confidence_sum += rule.confidence
            self._category_counts[rule.category.value] += 1
        if self.monitor is not None:
            self.monitor.record_rule_generation(len(rules), fallback=used_fallback)

        _logger.info(
            "rules_generated",
            count=len(rules),
            source=rules[0].source if rules else None,
        )
        return rules

    async def _generate_from_prompt(self, prompt: str, source: str) -> list[CandidateRule]:
        result = await generate_with_timeout(self.generator, prompt, self.timeout_seconds)
        if self.monitor is not None:
            self.monitor.record_llm_call(result.duration_seconds, result.success)
        if not result.success:
            _logger.warning(
                "generation_call_failed",
                source=source,
                error_type=result.error_type,
                error=result.error,
            )
            return []
        return self.parse_rules(result.content, source=source)

    def parse_rules(self, content: str, source: str = "llm") -> list[CandidateRule]:
        """Parse a model reply into clamped candidate rules.

        Malformed entries are skipped; an unparseable reply yields [].
        """
        parsed = extract_json(content)
        if not parsed.ok:
            _logger.warning("rule_reply_unparseable", source=source, reason=parsed.reason)
            return []

        rules: list[CandidateRule] = []
        for raw in find_rule_list(parsed.value):
            if not isinstance(raw, Mapping):
                continue
            rule = CandidateRule.from_dict(raw, source=source)
            if rule is None:
                _logger.debug("rule_entry_skipped", source=source)
                continue
            rule.confidence = self._clamp_confidence(rule.confidence)
            rules.append(rule)
        return rules

    def _clamp_confidence(self, confidence: float) -> float:
        low = self.config.llm_confidence_min
        high = self.config.llm_confidence_max
        return round(min(high, max(low, confidence)), 4)

    @staticmethod
    def generate_fallback_rules(context: LearningContext) -> list[CandidateRule]:
        """Build rules from fixed templates matched against the context's issues.

        Each template fires at most once. If nothing matches, one generic
        low-severity performance rule is returned.
        """
        rules: list[CandidateRule] = []
        fired: set[int] = set()
        for category, issue in context.all_patterns():
            for index, template in enumerate(FALLBACK_TEMPLATES):
                if index in fired or not template.matches(category, issue):
                    continue
                fired.add(index)
                rules.append(template.build(issue, context.sql))
                break

        if not rules:
            generic_issue = AnalysisIssue(type="general", severity=Severity.LOW)
            rules.append(GENERIC_TEMPLATE.build(generic_issue, context.sql))
        return rules

    def get_metrics(self) -> dict[str, Any]:
        metrics = self._metrics
        return {
            "total_generations": metrics.total_generations,
            "successful_generations": metrics.successful_generations,
            "failed_generations": metrics.failed_generations,
            "fallback_generations": metrics.fallback_generations,
            "total_rules": metrics.total_rules,
            "average_confidence": (
                round(metrics.confidence_sum / metrics.total_rules, 4)
                if metrics.total_rules
                else 0.0
            ),
            "rules_by_category": dict(self._category_counts),
        }
