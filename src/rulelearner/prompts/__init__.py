"""Prompt templates for the text-generation collaborator."""

from rulelearner.prompts.templating import PromptBuilder

__all__ = ["PromptBuilder"]
