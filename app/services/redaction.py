"""PII redaction for conversation logs.

Redaction is a pipeline of independent text passes, each a pure ``str -> str``
function that replaces what it finds with ``REDACTION_MARKER``:

1. names reported by a name detector (spaCy NER by default; whole phrase,
   then every token)
2. emails, phone numbers, SSN-shaped sequences and dates
3. self-introductions ("my name is X", "call me X", "regards, X")

Redaction fails open: if any pass raises, the original text is returned.
It is a display aid for operators, not a privacy guarantee.
"""

import re
from typing import Callable, Iterable, List, Optional, Protocol, Sequence, TypeVar

from app.core.config import settings
from app.core.logging import setup_logger

logger = setup_logger(__name__)

REDACTION_MARKER = "[REDACTED]"

TextPass = Callable[[str], str]

# Common first names used to seed the heuristic detector. Names that double as
# everyday English words (Will, May, Grace, Mark, ...) are left out on purpose.
FIRST_NAMES = frozenset(
    """
    Aaron Abigail Adam Adrian Aiden Alan Albert Alex Alexander Alexandra Alice
    Alicia Alison Amanda Amber Amelia Amy Andrea Andrew Angela Anna Anne Anthony
    Antonio Arthur Ashley Austin Ava Barbara Benjamin Beth Betty Brandon Brenda
    Brian Brittany Bruce Caleb Cameron Carl Carlos Carol Caroline Catherine
    Charles Charlotte Chloe Chris Christina Christine Christopher Cindy Claire
    Daniel Danielle David Deborah Debra Denise Dennis Diana Diane Donald Donna
    Dorothy Douglas Dylan Edward Elizabeth Ella Ellen Emily Emma Eric Ethan
    Eugene Evelyn Fatima Frances Frank Gabriel Gary George Gerald Gloria Gregory
    Hannah Harold Harry Heather Helen Henry Isabella Isaac Jack Jacob Jacqueline
    James Jamie Janet Janice Jason Jean Jeffrey Jennifer Jeremy Jerry Jesse
    Jessica Joan John Jonathan Jordan Jose Joseph Joshua Joyce Juan Judith Judy
    Julia Julie Justin Karen Katherine Kathleen Kathryn Kayla Keith Kelly Kenneth
    Kevin Kimberly Kyle Laura Lauren Lawrence Leah Liam Linda Lisa Logan Lucas
    Lucy Luis Madison Margaret Maria Marie Marilyn Martha Martin Mary Mason
    Matthew Megan Melissa Michael Michelle Mohammed Muhammad Nancy Natalie
    Nathan Nicholas Nicole Noah Oliver Olivia Pamela Patricia Patrick Paul
    Peter Philip Priya Rachel Ralph Raymond Rebecca Richard Robert Roger Ronald
    Roy Russell Ryan Samantha Samuel Sandra Sara Sarah Scott Sean Sharon Shirley
    Sophia Stephanie Stephen Steven Susan Teresa Theresa Thomas Timothy Tyler
    Victoria Vincent Virginia Walter Wayne William Zachary
    """.split()
)

# Capitalised words that start sentences or greetings and are never names
STOPWORDS = frozenset(
    word.lower()
    for word in """
    A An The I Im Me My Mine We Our You Your He She It They Them His Her Their
    This That These Those There Here What When Where Why How Who Which Whom
    Hi Hello Hey Dear Thanks Thank Regards Best Cheers Sincerely Yes No Not Ok
    Okay Please Sorry Good Great Fine Well Just Also And But Or So If Then
    Monday Tuesday Wednesday Thursday Friday Saturday Sunday January February
    March April May June July August September October November December
    Today Tomorrow Yesterday Morning Evening Mr Mrs Ms Miss Dr Prof Sir Madam
    Happy Sad Here Ready Sure Done Back Home New Redacted
    """.split()
)

TITLE = re.compile(r"\b(?:Mr|Mrs|Ms|Miss|Dr|Prof)\.?\s+")
CAPITALISED_WORD = re.compile(r"\b[A-Z][a-z]+(?:['-][A-Z]?[a-z]+)?\b")

EMAIL_PATTERN = re.compile(r"[\w.+-]+@[\w.-]+\.\w+")
PHONE_PATTERN = re.compile(
    r"(?:\+\d{1,2}\s?)?(?:\(\d{3}\)|\b\d{3})[\s.-]?\d{3}[\s.-]?\d{4}\b"
)
SSN_PATTERN = re.compile(r"\b\d{3}-?\d{2}-?\d{4}\b")
DATE_PATTERNS = (
    re.compile(r"\b\d{1,2}[/.-]\d{1,2}[/.-]\d{2,4}\b"),
    re.compile(r"\b\d{4}-\d{1,2}-\d{1,2}\b"),
    re.compile(
        r"\b(?:Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|June?|July?"
        r"|Aug(?:ust)?|Sep(?:t(?:ember)?)?|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?)"
        r"\.?\s+\d{1,2}(?:st|nd|rd|th)?,?\s+\d{4}\b",
        re.IGNORECASE,
    ),
)

NAME = r"(?P<name>[A-Z][a-z]+(?:['-][A-Z]?[a-z]+)?)"
INTRODUCTION_PATTERNS = (
    re.compile(r"(?i:\bmy\s+name\s+is|\bname's)\s+(?P<name>[A-Za-z][A-Za-z'-]*)"),
    re.compile(r"\b(?:I\s+am|I'm|Im)\s+" + NAME),
    re.compile(r"(?i:\bcall\s+me|\bthis\s+is|\bit's)\s+" + NAME),
    re.compile(
        r"(?i:\b(?:kind\s+regards|best\s+regards|regards|thanks|thank\s+you|cheers"
        r"|sincerely|best))\s*,\s*" + NAME
    ),
)


class NameDetector(Protocol):
    """Finds person names in free text."""

    def detect(self, text: str) -> List[str]: ...


class HeuristicNameDetector:
    """
    Lexicon-seeded person name detector.

    A capitalised word starts a name when it is a known first name or follows a
    title (Mr, Dr, ...). Up to two following capitalised words are taken as the
    rest of the name.
    """

    max_tokens = 3

    def detect(self, text: str) -> List[str]:
        words = list(CAPITALISED_WORD.finditer(text))
        # Offsets where a word directly follows a title
        titled = {match.end() for match in TITLE.finditer(text)}
        names: List[str] = []
        i = 0
        while i < len(words):
            word = words[i]
            token = word.group()
            seeded = token in FIRST_NAMES or word.start() in titled
            if not seeded or token.lower() in STOPWORDS:
                i += 1
                continue

            run = [word]
            while i + len(run) < len(words) and len(run) < self.max_tokens:
                following = words[i + len(run)]
                gap = text[run[-1].end() : following.start()]
                if not gap or not gap.isspace() or "\n" in gap:
                    break
                if following.group().lower() in STOPWORDS:
                    break
                run.append(following)

            names.append(text[run[0].start() : run[-1].end()])
            i += len(run)
        return names


def _token_pattern(token: str) -> str:
    # Word-bounded, and never part of an email local part such as alex.smith@
    return rf"(?<![\w.@-]){re.escape(token)}(?!\.?[\w@-])"


def replace_names(text: str, names: Iterable[str]) -> str:
    """Replace each name as a phrase, then each of its tokens, with the marker."""
    tokens: List[str] = []
    for name in dict.fromkeys(names):
        parts = name.split()
        if len(name) <= 1 or not parts:
            continue
        if len(parts) > 1:
            phrase = r"\s+".join(re.escape(part) for part in parts)
            text = re.sub(
                rf"(?<![\w.@-]){phrase}(?!\.?[\w@-])",
                REDACTION_MARKER,
                text,
                flags=re.IGNORECASE,
            )
        tokens.extend(
            part
            for part in parts
            if len(part) > 1 and part.lower() not in STOPWORDS
        )

    # Longest first so "Alexander" is not clipped by "Alex"
    for token in sorted(set(tokens), key=len, reverse=True):
        text = re.sub(_token_pattern(token), REDACTION_MARKER, text, flags=re.IGNORECASE)
    return text


def name_pass(detector: NameDetector) -> TextPass:
    """Build the name pass around a detector."""

    def redact_names(text: str) -> str:
        return replace_names(text, detector.detect(text))

    return redact_names


def pattern_pass(text: str) -> str:
    """Replace emails, phone numbers, SSNs and dates."""
    text = EMAIL_PATTERN.sub(REDACTION_MARKER, text)
    text = PHONE_PATTERN.sub(REDACTION_MARKER, text)
    text = SSN_PATTERN.sub(REDACTION_MARKER, text)
    for pattern in DATE_PATTERNS:
        text = pattern.sub(REDACTION_MARKER, text)
    return text


def introduction_pass(text: str) -> str:
    """Replace names people give when introducing or signing off."""
    names = [
        match.group("name")
        for pattern in INTRODUCTION_PATTERNS
        for match in pattern.finditer(text)
        if len(match.group("name")) > 1
        and match.group("name").lower() not in STOPWORDS
    ]
    if not names:
        return text
    return replace_names(text, names)


class PIIRedactor:
    """Applies redaction passes in order, returning the original text on failure."""

    def __init__(self, passes: Sequence[TextPass]) -> None:
        self._passes = list(passes)

    def redact(self, text: str) -> str:
        """
        Redact PII from a piece of user-authored text.

        Args:
            text: Text to redact

        Returns:
            Text with detected PII replaced by the redaction marker, or the
            unchanged text when redaction fails
        """
        if not text:
            return text
        try:
            redacted = text
            for text_pass in self._passes:
                redacted = text_pass(redacted)
            return redacted
        except Exception as e:
            logger.error(f"PII redaction failed, returning original text: {e}", exc_info=True)
            return text


def build_name_detector(kind: Optional[str] = None) -> NameDetector:
    """
    Create the configured name detector.

    ``spacy`` (default) runs local NER and uses the lexicon heuristic only
    while its model package is not installed. ``comprehend`` calls AWS.
    ``heuristic`` uses the lexicon alone.
    """
    kind = (kind or settings.REDACTION_NAME_DETECTOR).lower()
    if kind == "comprehend":
        from app.services.comprehend import ComprehendNameDetector

        return ComprehendNameDetector()
    if kind == "heuristic":
        return HeuristicNameDetector()
    if kind != "spacy":
        logger.warning(f"Unknown name detector '{kind}', using spacy detector")

    from app.services.spacy_ner import SpacyNameDetector

    return SpacyNameDetector(fallback=HeuristicNameDetector())


def build_redactor(detector: Optional[NameDetector] = None) -> PIIRedactor:
    """Create the standard three-pass redactor."""
    return PIIRedactor(
        [
            name_pass(detector or build_name_detector()),
            pattern_pass,
            introduction_pass,
        ]
    )


M = TypeVar("M")


def redact_user_messages(messages: Iterable[M], redactor: PIIRedactor) -> List[M]:
    """
    Redact the user-authored entries of a message list.

    Bot answers are operator-controlled and stay verbatim for quality review.
    Items must be pydantic models with ``is_user`` and ``content`` fields.
    """
    return [
        (
            message.model_copy(update={"content": redactor.redact(message.content)})
            if message.is_user
            else message
        )
        for message in messages
    ]


# Singleton instance
pii_redactor = build_redactor()
