"""
Reply guardrails.

Deterministic checks run on every drafted reply before it is sent, plus
the cheap text fixes tried before asking the model to rewrite. The
consultative checker enforces the hook/fact/question style; the support
checker has its own, unrelated rule set.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from config.agent_config import StyleRules

logger = logging.getLogger(__name__)

NO_QUESTION = "no_question"
MULTIPLE_QUESTIONS = "multiple_questions"
BANNED_OPENER = "banned_opener"
TOO_MANY_LINES = "too_many_lines"
CORPORATE_LANGUAGE = "corporate_language"
BROKEN_START = "broken_start"

# Support flow issues
COLD_TONE = "cold_tone"
TOO_LONG = "too_long"
SALES_LANGUAGE = "sales_language"
QUALIFICATION_QUESTION = "qualification_question"


@dataclass
class CheckResult:
    """Result of checking one draft."""
    text: str
    issues: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.issues

    def has(self, issue: str) -> bool:
        return any(i == issue or i.startswith(f"{issue}:") for i in self.issues)


def content_lines(text: str) -> List[str]:
    return [line for line in text.split("\n") if line.strip()]


def _capitalize(text: str) -> str:
    return text[:1].upper() + text[1:] if text else text


class StyleChecker:
    """
    Checks consultative replies.

    Rules:
    1. Exactly one question mark
    2. No banned opener as the first word(s)
    3. At most max_lines content lines
    4. No banned corporate phrases
    5. No broken sentence start (dangling conjunction)
    """

    def __init__(self, rules: StyleRules):
        self.rules = rules
        self._openers = [o.strip().lower() for o in rules.banned_openers if o.strip()]
        self._opener_patterns = [
            re.compile(rf"^\s*{re.escape(o)}(?!\w)[\s,!.;:\-]*", re.IGNORECASE)
            for o in self._openers
        ]
        self._broken_patterns = [re.compile(p, re.IGNORECASE) for p in rules.broken_start_patterns]

    def check(self, text: str) -> CheckResult:
        text = text or ""
        result = CheckResult(text=text)

        questions = text.count("?")
        if questions == 0:
            result.issues.append(NO_QUESTION)
        elif questions > 1:
            result.issues.append(MULTIPLE_QUESTIONS)

        opener = self.banned_opener(text)
        if opener:
            result.issues.append(f"{BANNED_OPENER}:{opener}")

        if len(content_lines(text)) > self.rules.max_lines:
            result.issues.append(TOO_MANY_LINES)

        lowered = text.lower()
        if any(phrase.lower() in lowered for phrase in self.rules.banned_phrases):
            result.issues.append(CORPORATE_LANGUAGE)

        if self.has_broken_start(text):
            result.issues.append(BROKEN_START)

        return result

    def banned_opener(self, text: str) -> Optional[str]:
        stripped = (text or "").lstrip()
        first = re.split(r"[\s,!.;:]", stripped, maxsplit=1)[0].lower()
        if first in self._openers:
            return first
        for opener, pattern in zip(self._openers, self._opener_patterns):
            if " " in opener and pattern.match(stripped):
                return opener
        return None

    def has_broken_start(self, text: str) -> bool:
        stripped = (text or "").strip()
        return any(p.search(stripped) for p in self._broken_patterns)

    def strip_opener(self, text: str) -> str:
        stripped = text.lstrip()
        # Longest opener first so "got it" wins over a shorter prefix
        for opener, pattern in sorted(zip(self._openers, self._opener_patterns), key=lambda x: -len(x[0])):
            match = pattern.match(stripped)
            if match:
                return _capitalize(stripped[match.end():].lstrip())
        return text

    def strip_broken_start(self, text: str) -> str:
        stripped = text.strip()
        if not self.has_broken_start(stripped):
            return text
        # Drop the dangling first word
        parts = stripped.split(None, 1)
        return _capitalize(parts[1].lstrip(" ,")) if len(parts) > 1 else ""

    def apply_fixes(self, text: str) -> str:
        """
        Strip banned openers and broken starts until nothing changes.

        Running it on its own output returns the same text.
        """
        current = (text or "").strip()
        # Every effective pass shortens the text, so this terminates
        while True:
            fixed = self.strip_broken_start(self.strip_opener(current)).strip()
            if fixed == current:
                return current
            current = fixed

    def repair_instructions(self, issues: List[str]) -> List[str]:
        instructions = []
        for issue in issues:
            if issue == NO_QUESTION:
                instructions.append("End with exactly one question.")
            elif issue == MULTIPLE_QUESTIONS:
                instructions.append("Keep only ONE question mark in the whole message.")
            elif issue.startswith(BANNED_OPENER):
                word = issue.split(":", 1)[-1]
                instructions.append(f'Do not start with "{word}". Open by mirroring what the lead said.')
            elif issue == TOO_MANY_LINES:
                instructions.append(f"Use at most {self.rules.max_lines} lines.")
            elif issue == CORPORATE_LANGUAGE:
                instructions.append("Drop generic corporate phrases; speak plainly.")
            elif issue == BROKEN_START:
                instructions.append("Start with a complete sentence.")
        return instructions


class SupportResponseChecker:
    """
    Checks customer-support replies.

    Rules:
    1. No cold, bureaucratic wording
    2. At most MAX_LINES content lines
    3. No sales language
    4. No qualification questions (budget, decision maker, timeline)
    """

    MAX_LINES = 8

    COLD_WORDS = [
        "per our policy", "as per policy", "as previously stated", "unfortunately we cannot",
        "that is not possible", "you must", "not our responsibility", "ticket number only",
    ]

    SALES_WORDS = [
        "upgrade", "special offer", "discount", "buy now", "premium plan",
        "limited time", "promotion", "exclusive deal",
    ]

    QUALIFICATION_PATTERNS = [
        re.compile(r"\bbudget\b", re.IGNORECASE),
        re.compile(r"\bwho (?:makes the decision|decides)\b", re.IGNORECASE),
        re.compile(r"\bwhen (?:are you|do you) plan(?:ning)?\b", re.IGNORECASE),
        re.compile(r"\bdecision[- ]maker\b", re.IGNORECASE),
    ]

    def check(self, text: str) -> CheckResult:
        text = text or ""
        result = CheckResult(text=text)
        lowered = text.lower()

        if any(w in lowered for w in self.COLD_WORDS):
            result.issues.append(COLD_TONE)
        if len(content_lines(text)) > self.MAX_LINES:
            result.issues.append(TOO_LONG)
        if any(re.search(rf"\b{re.escape(w)}\b", lowered) for w in self.SALES_WORDS):
            result.issues.append(SALES_LANGUAGE)
        if any(p.search(text) for p in self.QUALIFICATION_PATTERNS):
            result.issues.append(QUALIFICATION_QUESTION)

        if not result.valid:
            logger.warning(f"Support reply check flags: {result.issues}")
        return result

    @staticmethod
    def repair_instructions(issues: List[str]) -> List[str]:
        mapping = {
            COLD_TONE: "Use a warm, human tone; no policy language.",
            TOO_LONG: f"Keep it under {SupportResponseChecker.MAX_LINES} lines.",
            SALES_LANGUAGE: "Do not sell or mention offers; this is support.",
            QUALIFICATION_QUESTION: "Do not ask about budget, decision makers or purchase timing.",
        }
        return [mapping[i] for i in issues if i in mapping]
