"""Behavior rule matching for static operator answers."""

from typing import Iterable, Optional

from app.schemas.chatbot import BehaviorRule


def match_rule(user_message: str, rules: Iterable[BehaviorRule]) -> Optional[str]:
    """
    Return the response of the first rule whose condition appears in the message.

    Conditions match case-insensitively as substrings of the raw message and
    are evaluated top to bottom; a rule with an empty condition never matches.

    Args:
        user_message: Raw user message
        rules: Ordered behavior rules of the chatbot

    Returns:
        The matching rule's response, or None when no rule fires
    """
    lowered = user_message.lower()
    for rule in rules:
        if rule.condition and rule.condition.lower() in lowered:
            return rule.response
    return None
