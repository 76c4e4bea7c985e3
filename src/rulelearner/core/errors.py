"""Exception hierarchy for the rule learner.

All errors inherit from RuleLearningError so callers can catch broadly
or narrowly. Only configuration and programmer errors are raised out of
the pipeline; external-call and validation failures degrade to structured
results instead.
"""

from __future__ import annotations


class RuleLearningError(Exception):
    """Base exception for all rule-learning errors."""


class ConfigurationError(RuleLearningError):
    """Raised when the pipeline is configured or wired incorrectly."""


class ValidationLevelError(ConfigurationError):
    """Raised when an unknown validation level is requested.

    Valid levels are ``basic``, ``complete`` and ``strict``.
    """


class MissingCollaboratorError(ConfigurationError):
    """Raised when a required collaborator (generator, history) is absent."""


class InvalidTransitionError(RuleLearningError):
    """Raised when a rule lifecycle transition is not allowed."""


class RuleStorageError(RuleLearningError):
    """Raised when a rule file cannot be written.

    The approver catches this per rule, logs it, and skips the rule.
    """
