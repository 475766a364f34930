# Vault - Password & Passphrase Generation
#
# Candidate secrets for credentials, drawn from the `secrets` CSPRNG (the
# same randomness source as key material). Entropy figures are for UX
# labels only and never drive a security decision.

import math
import secrets
from dataclasses import dataclass
from typing import Optional

UPPERCASE = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
LOWERCASE = "abcdefghijklmnopqrstuvwxyz"
DIGITS = "0123456789"
SYMBOLS = "!@#$%^&*()_+-=[]{}|;:,.<>?"
AMBIGUOUS = "0O1lI"

# Pool sizes used for entropy labels
UPPERCASE_POOL = 26
UPPERCASE_POOL_UNAMBIGUOUS = 24
LOWERCASE_POOL = 26
LOWERCASE_POOL_UNAMBIGUOUS = 25
DIGIT_POOL = 10
DIGIT_POOL_UNAMBIGUOUS = 8
SYMBOL_POOL = 28

WORD_LIST = (
    "ability", "able", "about", "above", "accept", "account", "across", "action",
    "active", "actual", "address", "admit", "adult", "affect", "after", "again",
    "against", "agent", "agree", "ahead", "allow", "almost", "alone", "along",
    "already", "also", "always", "among", "amount", "animal", "answer", "anyone",
    "appear", "apply", "approach", "argue", "around", "artist", "assume", "attack",
    "attend", "author", "avoid", "become", "before", "begin", "behavior", "behind",
    "believe", "benefit", "better", "between", "beyond", "billion", "blood", "board",
    "body", "book", "break", "bring", "brother", "budget", "build", "building",
    "business", "camera", "campaign", "cancer", "candidate", "capital", "career",
    "carry", "catch", "cause", "center", "central", "century", "certain", "chair",
    "challenge", "chance", "change", "chapter", "character", "charge", "check",
    "child", "choice", "choose", "church", "citizen", "claim", "class", "clear",
    "close", "coach", "cold", "collection", "college", "color", "come", "commercial",
    "common", "community", "company", "compare", "computer", "concern", "condition",
    "conference", "congress", "consider", "consumer", "contain", "continue",
    "control", "cost", "could", "country", "couple", "course", "court", "cover",
    "create", "crime", "culture", "current", "customer", "dark", "daughter", "dead",
    "deal", "death", "debate", "decade", "decide", "decision", "deep", "defense",
    "degree", "democrat", "describe", "design", "despite", "detail", "determine",
    "develop", "difference", "different", "difficult", "dinner", "direction",
    "director", "discover", "discuss", "disease", "doctor", "door", "down", "draw",
    "dream", "drive", "drop", "drug", "during", "each", "early", "east", "easy",
    "economic", "economy", "edge", "education", "effect", "effort", "eight", "either",
    "election", "employee", "energy", "enjoy", "enough", "enter", "entire",
    "environment", "especially", "establish", "even", "evening", "event", "every",
    "everybody", "everyone", "evidence", "exact", "example", "executive", "exist",
    "expect", "experience", "expert", "explain", "face", "fact", "factor", "fail",
    "fall", "family", "father", "fear", "federal", "feel", "feeling", "field", "fight",
    "figure", "fill", "film", "final", "finally", "financial", "find", "fine", "finger",
    "finish", "fire", "firm", "first", "fish", "five", "floor", "focus", "follow",
    "food", "foot", "force", "foreign", "forget", "form", "former", "forward", "four",
    "free", "friend", "from", "front", "full", "fund", "future", "game", "garden",
    "general", "generation", "girl", "give", "glass", "goal", "good", "government",
    "great", "green", "ground", "group", "grow", "growth", "guess", "hair", "half",
    "hand", "hang", "happen", "happy", "hard", "have", "head", "health", "hear", "heart",
    "heat", "heavy", "help", "here", "herself", "high", "himself", "history", "hold",
    "home", "hope", "hospital", "hotel", "hour", "house", "however", "huge", "human",
    "hundred", "husband",)


@dataclass
class PasswordOptions:
    length: int = 16
    uppercase: bool = True
    lowercase: bool = True
    numbers: bool = True
    symbols: bool = True
    exclude_ambiguous: bool = False


@dataclass
class PassphraseOptions:
    word_count: int = 4
    separator: str = "-"
    capitalize: bool = True


def _charset(options: PasswordOptions) -> str:
    charset = ""
    if options.uppercase:
        charset += UPPERCASE
    if options.lowercase:
        charset += LOWERCASE
    if options.numbers:
        charset += DIGITS
    if options.symbols:
        charset += SYMBOLS
    if options.exclude_ambiguous:
        charset = "".join(c for c in charset if c not in AMBIGUOUS)
    # Every class disabled still yields a usable password
    return charset or LOWERCASE


def generate_password(options: Optional[PasswordOptions] = None) -> str:
    """Random password of exactly options.length characters."""
    options = options or PasswordOptions()
    charset = _charset(options)
    return "".join(secrets.choice(charset) for _ in range(max(options.length, 0)))


def generate_passphrase(options: Optional[PassphraseOptions] = None) -> str:
    """Random passphrase of options.word_count words from WORD_LIST."""
    options = options or PassphraseOptions()
    words = []
    for _ in range(max(options.word_count, 0)):
        word = secrets.choice(WORD_LIST)
        if options.capitalize:
            word = word[:1].upper() + word[1:]
        words.append(word)
    return options.separator.join(words)


def calculate_entropy(options: Optional[PasswordOptions] = None) -> int:
    """floor(length * log2(pool size)) for the enabled character classes."""
    options = options or PasswordOptions()
    pool = 0
    if options.uppercase:
        pool += UPPERCASE_POOL_UNAMBIGUOUS if options.exclude_ambiguous else UPPERCASE_POOL
    if options.lowercase:
        pool += LOWERCASE_POOL_UNAMBIGUOUS if options.exclude_ambiguous else LOWERCASE_POOL
    if options.numbers:
        pool += DIGIT_POOL_UNAMBIGUOUS if options.exclude_ambiguous else DIGIT_POOL
    if options.symbols:
        pool += SYMBOL_POOL
    if pool == 0:
        pool = LOWERCASE_POOL
    if options.length <= 0:
        return 0
    return math.floor(options.length * math.log2(pool))


def calculate_passphrase_entropy(word_count: int) -> int:
    """floor(word_count * log2(len(WORD_LIST)))."""
    if word_count <= 0:
        return 0
    return math.floor(word_count * math.log2(len(WORD_LIST)))
