"""
Deterministic answer parsers.

Every parser here is total: it returns a ParseResult and never raises. Matching is
alias/keyword based against small vocabularies, case-insensitive and
whitespace-normalized.
"""
import re
from typing import Dict, List, Mapping, Optional, Tuple

from .models import (
    ActivityAnswer, BoundariesAnswer, ConversationStyleAnswer, GroupSizeAnswer,
    IntroAnswer, LocationAnswer, MotiveAnswer, NormalizedAnswer, PaceAnswer,
    ParseResult, StyleAnswer, TimePreferenceAnswer, TopActivityAnswer, ValuesAnswer,
)
from ..config import MAX_ACTIVITY_KEYS, MAX_BOUNDARY_ITEMS

ParseContext = Mapping[str, NormalizedAnswer]


def normalize_text(text: str) -> str:
    return re.sub(r"\s+", " ", (text or "").strip().lower())


def parse_single_choice(text: str, choices: Mapping[str, str]) -> Optional[str]:
    """
    Resolve one answer against a {token: canonical} map.

    Tries the normalized text first, then a compact form with dots and spaces
    removed so "B." and "2 - 3" still resolve.
    """
    normalized = normalize_text(text)
    if normalized in choices:
        return choices[normalized]
    compact = re.sub(r"[.\s!)]", "", normalized)
    return choices.get(compact)


MULTI_CHOICE_SPLIT = re.compile(r"[,&/]|\band\b|\+")


def parse_multi_choice(text: str, choices: Mapping[str, str], max_values: int) -> List[str]:
    """Resolve a comma/and separated answer, deduplicated and capped at max_values."""
    values: List[str] = []
    for part in MULTI_CHOICE_SPLIT.split(normalize_text(text)):
        if not part.strip():
            continue
        value = parse_single_choice(part, choices)
        if value is not None and value not in values:
            values.append(value)
        if len(values) >= max_values:
            break
    return values


# =============================================================================
# Vocabularies
# =============================================================================

ACTIVITY_ALIAS_MAP: Dict[str, Tuple[str, ...]] = {
    "coffee": ("coffee", "cafe", "espresso", "latte"),
    "walk": ("walk", "walking", "walks", "stroll"),
    "museum": ("museum", "museums", "gallery", "exhibit", "art"),
    "climbing": ("climbing", "bouldering", "climb"),
    "games": ("games", "board game", "board games", "arcade"),
    "brunch": ("brunch", "breakfast"),
    "hike": ("hike", "hiking", "trail"),
    "dinner": ("dinner", "food", "restaurant"),
    "music": ("music", "concert", "show"),
}

INTRO_CHOICES = {
    "yes": "yes", "y": "yes", "start": "yes", "ready": "yes", "yep": "yes", "sure": "yes",
    "later": "later", "l": "later", "not now": "later",
}

MOTIVE_RULES: Tuple[Tuple[str, "re.Pattern[str]", float], ...] = (
    ("connection", re.compile(r"\b(deep|deeper|real|conversation|convo|connect)\b"), 0.75),
    ("fun", re.compile(r"\b(fun|laugh|laughs|easygoing|light)\b"), 0.7),
    ("restorative", re.compile(r"\b(calm|reset|quiet|recharge)\b"), 0.7),
    ("adventure", re.compile(r"\b(adventure|new|explore|spontaneous)\b"), 0.7),
    ("comfort", re.compile(r"\b(comfort|cozy|relax)\b"), 0.6),
)
UNSURE_MOTIVE_PATTERN = re.compile(r"\b(idk|chill|whatever|not sure)\b")
UNSURE_MOTIVE_WEIGHTS = {"comfort": 0.5, "restorative": 0.45}

MOTIVE_QUICK_PICK_CHOICES = {
    "a": "connection", "1": "connection", "optiona": "connection", "deep conversation": "connection",
    "b": "fun", "2": "fun", "optionb": "fun", "easygoing laughs": "fun",
    "c": "restorative", "3": "restorative", "optionc": "restorative", "quiet recharge": "restorative",
    "d": "adventure", "4": "adventure", "optiond": "adventure", "something new": "adventure",
}
QUICK_PICK_WEIGHT = 0.8

SOCIAL_STYLE_CHOICES = {
    "a": "curious", "1": "curious", "curious": "curious",
    "b": "funny", "2": "funny", "funny": "funny",
    "c": "thoughtful", "3": "thoughtful", "thoughtful": "thoughtful",
    "d": "energetic", "4": "energetic", "energetic": "energetic",
}

CONVERSATION_STYLE_CHOICES = {
    "a": "ideas", "1": "ideas", "ideas": "ideas", "idea": "ideas",
    "b": "feelings", "2": "feelings", "feelings": "feelings", "feeling": "feelings",
    "c": "stories", "3": "stories", "stories": "stories", "story": "stories",
    "d": "plans", "4": "plans", "plans": "plans", "plan": "plans",
}

PACE_CHOICES = {
    "a": "slow", "1": "slow", "slow": "slow",
    "b": "medium", "2": "medium", "medium": "medium",
    "c": "fast", "3": "fast", "fast": "fast",
}

GROUP_SIZE_CHOICES = {
    "a": "2-3", "1": "2-3", "2-3": "2-3",
    "b": "4-6", "2": "4-6", "4-6": "4-6",
    "c": "7-10", "3": "7-10", "7-10": "7-10",
}

VALUES_CHOICES = {
    "a": "very", "1": "very", "very": "very", "very important": "very",
    "b": "somewhat", "2": "somewhat", "somewhat": "somewhat",
    "c": "not_a_big_deal", "3": "not_a_big_deal", "not a big deal": "not_a_big_deal",
    "notabigdeal": "not_a_big_deal", "not_a_big_deal": "not_a_big_deal",
}

TIME_PREFERENCE_CHOICES = {
    "a": "mornings", "1": "mornings", "mornings": "mornings", "morning": "mornings",
    "b": "afternoons", "2": "afternoons", "afternoons": "afternoons", "afternoon": "afternoons",
    "c": "evenings", "3": "evenings", "evenings": "evenings", "evening": "evenings",
    "d": "weekends_only", "4": "weekends_only", "weekends only": "weekends_only",
    "weekendsonly": "weekends_only", "weekends": "weekends_only", "weekend": "weekends_only",
}

VALID_TIME_PREFERENCES = frozenset(TIME_PREFERENCE_CHOICES.values())
VALID_GROUP_SIZES = frozenset(GROUP_SIZE_CHOICES.values())

PREFER_NOT_PATTERN = re.compile(r"\b(prefer not|rather not|skip|no thanks|pass)\b")
NO_BOUNDARIES_PATTERN = re.compile(r"^(none|nothing|no|nope|nah|n/a)$")
BOUNDARY_SPLIT = re.compile(r"[.,;]|\band\b|/")

COUNTRY_ALIASES = {
    "usa": "US", "united states": "US", "america": "US",
    "uk": "GB", "united kingdom": "GB", "canada": "CA",
}
LOCATION_PATTERN = re.compile(r"^([a-z]{2})(?:\s*[-_/, ]\s*([a-z0-9]{1,3}))?$")


# =============================================================================
# Parsers
# =============================================================================

def extract_activity_keys(text: str, max_keys: int = MAX_ACTIVITY_KEYS) -> List[str]:
    """Activity keys mentioned in the text, ordered by where they first appear."""
    normalized = normalize_text(text)
    found: List[Tuple[int, str]] = []
    for key, aliases in ACTIVITY_ALIAS_MAP.items():
        positions = []
        for alias in aliases:
            match = re.search(rf"\b{re.escape(alias)}\b", normalized)
            if match:
                positions.append(match.start())
        if positions:
            found.append((min(positions), key))
    found.sort()
    return [key for _, key in found[:max_keys]]


def parse_motive_weights(text: str) -> Dict[str, float]:
    normalized = normalize_text(text)
    weights = {motive: weight for motive, pattern, weight in MOTIVE_RULES if pattern.search(normalized)}
    if not weights and UNSURE_MOTIVE_PATTERN.search(normalized):
        return dict(UNSURE_MOTIVE_WEIGHTS)
    return weights


def parse_intro(text: str, context: ParseContext) -> ParseResult:
    consent = parse_single_choice(text, INTRO_CHOICES)
    if consent is None:
        return ParseResult.failure()
    return ParseResult.success(IntroAnswer(consent=consent))


def parse_activities(text: str, context: ParseContext) -> ParseResult:
    keys = extract_activity_keys(text)
    if not keys:
        return ParseResult.failure()
    return ParseResult.success(ActivityAnswer(activity_keys=tuple(keys)))


def parse_top_activity(text: str, context: ParseContext) -> ParseResult:
    """Accepts an activity name, or a 1/2/3 (a/b/c) pick from the earlier activity list."""
    prior = context.get("activity_01")
    prior_keys = prior.activity_keys if isinstance(prior, ActivityAnswer) else ()
    rank = parse_single_choice(text, {"1": "0", "2": "1", "3": "2", "a": "0", "b": "1", "c": "2"})
    if rank is not None and int(rank) < len(prior_keys):
        return ParseResult.success(TopActivityAnswer(activity_key=prior_keys[int(rank)]))

    keys = extract_activity_keys(text, max_keys=1)
    if not keys:
        return ParseResult.failure()
    return ParseResult.success(TopActivityAnswer(activity_key=keys[0]))


def parse_motive(text: str, context: ParseContext) -> ParseResult:
    weights = parse_motive_weights(text)
    if not weights:
        return ParseResult.failure()
    return ParseResult.success(MotiveAnswer(motive_weights=weights))


def parse_motive_quick_pick(text: str, context: ParseContext) -> ParseResult:
    motive = parse_single_choice(text, MOTIVE_QUICK_PICK_CHOICES)
    if motive is not None:
        return ParseResult.success(MotiveAnswer(motive_weights={motive: QUICK_PICK_WEIGHT}))
    return parse_motive(text, context)


def parse_social_style(text: str, context: ParseContext) -> ParseResult:
    style = parse_single_choice(text, SOCIAL_STYLE_CHOICES)
    if style is None:
        return ParseResult.failure()
    return ParseResult.success(StyleAnswer(social_style=style))


def parse_conversation_style(text: str, context: ParseContext) -> ParseResult:
    styles = parse_multi_choice(text, CONVERSATION_STYLE_CHOICES, max_values=2)
    if not styles:
        return ParseResult.failure()
    return ParseResult.success(ConversationStyleAnswer(conversation_styles=tuple(styles)))


def parse_pace(text: str, context: ParseContext) -> ParseResult:
    pace = parse_single_choice(text, PACE_CHOICES)
    if pace is None:
        return ParseResult.failure()
    return ParseResult.success(PaceAnswer(social_pace=pace))


def parse_group_size(text: str, context: ParseContext) -> ParseResult:
    size = parse_single_choice(text, GROUP_SIZE_CHOICES)
    if size is None:
        return ParseResult.failure()
    return ParseResult.success(GroupSizeAnswer(group_size_pref=size))


def parse_values(text: str, context: ParseContext) -> ParseResult:
    importance = parse_single_choice(text, VALUES_CHOICES)
    if importance is None:
        return ParseResult.failure()
    return ParseResult.success(ValuesAnswer(values_alignment_importance=importance))


def parse_boundaries(text: str, context: ParseContext) -> ParseResult:
    """
    Free-text boundaries, split into at most five items.

    "Prefer not to say" style replies become an explicit skip, which is not the
    same as answering with an empty list.
    """
    normalized = normalize_text(text)
    if not normalized:
        return ParseResult.failure()
    if PREFER_NOT_PATTERN.search(normalized):
        return ParseResult.success(BoundariesAnswer(no_thanks=(), skipped=True))
    if NO_BOUNDARIES_PATTERN.match(normalized.rstrip("!.")):
        return ParseResult.success(BoundariesAnswer(no_thanks=(), skipped=False))

    items: List[str] = []
    for part in BOUNDARY_SPLIT.split(normalized):
        item = part.strip()
        if item.startswith("etc"):
            continue
        if item and item not in items:
            items.append(item)
        if len(items) >= MAX_BOUNDARY_ITEMS:
            break
    if not items:
        return ParseResult.failure()
    return ParseResult.success(BoundariesAnswer(no_thanks=tuple(items), skipped=False))


def parse_time_preferences(text: str, context: ParseContext) -> ParseResult:
    times = parse_multi_choice(text, TIME_PREFERENCE_CHOICES, max_values=2)
    if not times:
        return ParseResult.failure()
    return ParseResult.success(TimePreferenceAnswer(time_preferences=tuple(times)))


def parse_location(text: str, context: ParseContext) -> ParseResult:
    """Country code with an optional region, e.g. "US-WA", "us wa", "CA"."""
    normalized = normalize_text(text).rstrip(".!")
    if normalized in COUNTRY_ALIASES:
        return ParseResult.success(LocationAnswer(country_code=COUNTRY_ALIASES[normalized]))
    match = LOCATION_PATTERN.match(normalized)
    if not match:
        return ParseResult.failure()
    country, region = match.group(1), match.group(2)
    return ParseResult.success(LocationAnswer(
        country_code=country.upper(),
        state_code=region.upper() if region else None,
    ))
