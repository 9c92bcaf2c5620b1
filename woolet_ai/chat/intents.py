"""Keyword heuristics that steer the chat loop without a model call.

All functions are pure and deterministic over the raw message text.
"""

import re

NAVIGATION_PATHS = (
    "/dashboard",
    "/transactions",
    "/accounts",
    "/investing",
    "/insights",
    "/budget",
    "/subscriptions",
    "/debts",
    "/settings",
)

_NAVIGATION_COMMAND = re.compile(
    r"^\s*(?:(?:please|can you|could you)\s+)?"
    r"(?:take me to|bring me to|navigate to|go to|switch to|open(?: up)?)\b",
    re.IGNORECASE,
)
_NAVIGATION_QUESTION = re.compile(
    r"\b(?:how (?:do|can) i (?:get|go) to|where can i find|where is the)\b", re.IGNORECASE
)
# Questions about the data itself go to the model even when they name a page.
_DATA_QUESTION = re.compile(
    r"\b(?:how (?:much|many)|what(?:'s| is| are| was| were) my|what did i|did i|do i (?:have|owe))\b",
    re.IGNORECASE,
)
# "go to transactions and add 50 for lunch" is a write request, not navigation.
_MUTATION_WITH_AMOUNT = re.compile(
    r"\b(?:add|create|record|log|make)\b.*\d", re.IGNORECASE
)

# First match wins, so more specific pages come before generic ones.
_PATH_KEYWORDS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("/investing", re.compile(r"\b(?:invest\w*|portfolio|stocks?|shares|holdings?)\b", re.I)),
    ("/subscriptions", re.compile(r"\bsubscriptions?\b", re.I)),
    ("/debts", re.compile(r"\b(?:debts?|credits?|loans?|mortgages?)\b", re.I)),
    ("/budget", re.compile(r"\bbudgets?\b", re.I)),
    ("/transactions", re.compile(r"\b(?:transactions?|history|expenses?|spending)\b", re.I)),
    ("/insights", re.compile(r"\b(?:insights?|reports?|analytics|charts?|trends?)\b", re.I)),
    ("/accounts", re.compile(r"\b(?:accounts?|banks?|cards?|wallets?)\b", re.I)),
    ("/settings", re.compile(r"\b(?:settings?|preferences?|profile)\b", re.I)),
    ("/dashboard", re.compile(r"\b(?:dashboard|home|overview|main page)\b", re.I)),
)

_FINANCE_DATA = re.compile(
    r"\b(?:how much|balances?|spen[dt]\w*|transactions?|expenses?|income|earn\w*|"
    r"banks?|accounts?|portfolio|stocks?|holdings?|invest\w*|net ?worth|debts?|"
    r"credits?|loans?|mortgages?|subscriptions?|budgets?|categor(?:y|ies)|payments?|"
    r"bills?|salary|owe\w*|paid|bought|purchases?|savings?|cash|money)\b",
    re.IGNORECASE,
)

_CURRENCY_CONTEXT = re.compile(
    r"(?:\b(?:usd|eur|gbp|kzt|rub|jpy|cny|chf|currenc(?:y|ies)|exchange rates?|"
    r"convert\w*|fx|dollars?|euros?|pounds?|tenge)\b|[$€£₸¥₽])",
    re.IGNORECASE,
)


def is_navigation_intent(message: str) -> bool:
    if not (_NAVIGATION_COMMAND.search(message) or _NAVIGATION_QUESTION.search(message)):
        return False
    if _DATA_QUESTION.search(message):
        return False
    return not _MUTATION_WITH_AMOUNT.search(message)


def resolve_navigation_path(message: str) -> str | None:
    for path, pattern in _PATH_KEYWORDS:
        if pattern.search(message):
            return path
    return None


def is_finance_data_intent(message: str) -> bool:
    return bool(_FINANCE_DATA.search(message))


def needs_currency_context(message: str) -> bool:
    return bool(_CURRENCY_CONTEXT.search(message))
