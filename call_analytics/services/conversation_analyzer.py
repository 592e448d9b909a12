"""
Conversation Analyzer - heuristic business-intelligence signals from transcripts.

This module derives sentiment, objective achievement, lead score, keywords,
call quality and next-step hints from a call transcript. It is a pure function
of its inputs: no I/O, no shared state, deterministic for a given transcript,
template category and configuration.

Algorithm:
1. Empty transcript -> neutral analysis with no quality score.
2. Sentiment: count the positive and negative vocabulary words present
   (case-insensitive substring match). Positive wins -> min(0.8, 0.5 + 0.1 * margin);
   negative wins -> max(-0.8, -0.5 - 0.1 * margin); tie -> neutral, 0.
   A provider-supplied label/score takes precedence over the heuristic.
3. Objectives: category-specific marker rules; lead-qualification categories
   score 25 points per objective found (BANT).
4. Keywords: transcript word set intersected with the business vocabulary.
5. Quality: clamp(1.0, 5.0, 3.0 + sentiment_score * 2.0 + 0.5 * objectives).
6. Next steps: "schedule_follow_up" for more than two objectives,
   "send_proposal" when an interest phrase is present.

Word lists, rules and scoring weights come from an injected AnalyzerConfig so
tests can substitute fixtures.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from call_analytics.models.enums import Sentiment
from call_analytics.models.schemas import ConversationAnalysis


# =============================================================================
# CONSTANTS - Default Vocabulary
# =============================================================================

DEFAULT_POSITIVE_WORDS: Tuple[str, ...] = (
    'great', 'excellent', 'satisfied', 'happy', 'good', 'perfect', 'amazing',
)

DEFAULT_NEGATIVE_WORDS: Tuple[str, ...] = (
    'bad', 'terrible', 'unsatisfied', 'angry', 'frustrated', 'awful', 'horrible',
)

DEFAULT_BUSINESS_KEYWORDS: Tuple[str, ...] = (
    'budget', 'timeline', 'decision', 'authority', 'need', 'problem', 'solution', 'price', 'cost',
)

DEFAULT_INTEREST_PHRASES: Tuple[str, ...] = ('interested', 'want to know more')

LEAD_QUALIFICATION_CATEGORY = 'lead-qualification-specialist'

# Call statuses meaning the caller was handed to a human
DEFAULT_ESCALATION_STATUSES: Tuple[str, ...] = ('transferred', 'escalated')

MIN_QUALITY_SCORE = 1.0
MAX_QUALITY_SCORE = 5.0
BASE_QUALITY_SCORE = 3.0
SENTIMENT_QUALITY_WEIGHT = 2.0
OBJECTIVE_QUALITY_WEIGHT = 0.5

FOLLOW_UP_OBJECTIVE_COUNT = 2

_WORD_PATTERN = re.compile(r"[a-z0-9']+")


@dataclass(frozen=True)
class ObjectiveRule:
    """An objective tag and the transcript markers that evidence it."""
    tag: str
    markers: Tuple[str, ...]

    def matches(self, transcript_lower: str) -> bool:
        return any(marker in transcript_lower for marker in self.markers)


BANT_RULES: Tuple[ObjectiveRule, ...] = (
    ObjectiveRule('budget_discussed', ('budget', 'price')),
    ObjectiveRule('authority_identified', ('decision', 'authority')),
    ObjectiveRule('need_identified', ('need', 'problem')),
    ObjectiveRule('timeline_established', ('timeline', 'when')),
)


@dataclass(frozen=True)
class AnalyzerConfig:
    """
    Vocabulary and scoring rules for the conversation analyzer.

    Attributes:
        positive_words / negative_words: Sentiment vocabularies.
        business_keywords: Vocabulary reported in keywordsMentioned.
        interest_phrases: Phrases that suggest sending a proposal.
        objective_rules: Objective rules keyed by template category.
        lead_scoring_categories: Categories whose objectives produce a lead score.
        lead_score_per_objective: Points per detected objective.
        escalation_statuses: Call statuses that mark the call as escalated.
    """
    positive_words: Tuple[str, ...] = DEFAULT_POSITIVE_WORDS
    negative_words: Tuple[str, ...] = DEFAULT_NEGATIVE_WORDS
    business_keywords: Tuple[str, ...] = DEFAULT_BUSINESS_KEYWORDS
    interest_phrases: Tuple[str, ...] = DEFAULT_INTEREST_PHRASES
    objective_rules: Mapping[str, Tuple[ObjectiveRule, ...]] = field(
        default_factory=lambda: {LEAD_QUALIFICATION_CATEGORY: BANT_RULES}
    )
    lead_scoring_categories: Tuple[str, ...] = (LEAD_QUALIFICATION_CATEGORY,)
    lead_score_per_objective: int = 25
    escalation_statuses: Tuple[str, ...] = DEFAULT_ESCALATION_STATUSES


DEFAULT_ANALYZER_CONFIG = AnalyzerConfig()


# =============================================================================
# Scoring Helpers
# =============================================================================


def score_sentiment(
    transcript_lower: str,
    config: AnalyzerConfig = DEFAULT_ANALYZER_CONFIG,
) -> Tuple[Sentiment, float]:
    """
    Classify sentiment by vocabulary presence.

    Each vocabulary word counts once when it appears anywhere in the
    transcript, so "unsatisfied" also counts as "satisfied".

    Returns:
        (sentiment, score) with score in [-0.8, 0.8].
    """
    positive = sum(1 for word in config.positive_words if word in transcript_lower)
    negative = sum(1 for word in config.negative_words if word in transcript_lower)

    if positive > negative:
        return Sentiment.POSITIVE, min(0.8, 0.5 + (positive - negative) * 0.1)
    if negative > positive:
        return Sentiment.NEGATIVE, max(-0.8, -0.5 - (negative - positive) * 0.1)
    return Sentiment.NEUTRAL, 0.0


def sentiment_from_score(score: float) -> Sentiment:
    """Label matching the sign of a sentiment score."""
    if score > 0:
        return Sentiment.POSITIVE
    if score < 0:
        return Sentiment.NEGATIVE
    return Sentiment.NEUTRAL


def detect_objectives(
    transcript_lower: str,
    template_category: Optional[str],
    config: AnalyzerConfig = DEFAULT_ANALYZER_CONFIG,
) -> List[str]:
    """Return the objective tags whose markers appear, in rule order."""
    rules = config.objective_rules.get(template_category or '', ())
    return [rule.tag for rule in rules if rule.matches(transcript_lower)]


def extract_keywords(
    transcript_lower: str,
    config: AnalyzerConfig = DEFAULT_ANALYZER_CONFIG,
) -> List[str]:
    """Business keywords present as whole words, in vocabulary order."""
    words = set(_WORD_PATTERN.findall(transcript_lower))
    return [keyword for keyword in config.business_keywords if keyword in words]


def compute_quality_score(sentiment_score: float, objectives_count: int) -> float:
    """
    Overall call quality on a 1-5 scale.

    Always clamped to [1.0, 5.0] whatever the inputs.
    """
    raw = (
        BASE_QUALITY_SCORE
        + sentiment_score * SENTIMENT_QUALITY_WEIGHT
        + objectives_count * OBJECTIVE_QUALITY_WEIGHT
    )
    return min(MAX_QUALITY_SCORE, max(MIN_QUALITY_SCORE, raw))


def suggest_next_steps(
    transcript_lower: str,
    objectives: List[str],
    config: AnalyzerConfig = DEFAULT_ANALYZER_CONFIG,
) -> List[str]:
    steps: List[str] = []
    if len(objectives) > FOLLOW_UP_OBJECTIVE_COUNT:
        steps.append('schedule_follow_up')
    if any(phrase in transcript_lower for phrase in config.interest_phrases):
        steps.append('send_proposal')
    return steps


# =============================================================================
# Main Entry Point
# =============================================================================


def analyze_conversation(
    transcript: Optional[str],
    template_category: Optional[str] = None,
    external_sentiment: Optional[Sentiment] = None,
    external_sentiment_score: Optional[float] = None,
    call_status: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    config: AnalyzerConfig = DEFAULT_ANALYZER_CONFIG,
) -> ConversationAnalysis:
    """
    Derive conversation signals from a call transcript.

    Args:
        transcript: Raw transcript text; empty or None yields a neutral analysis.
        template_category: Template category selecting objective rules
            (falls back to no objective rules when unknown).
        external_sentiment: Provider sentiment label, preferred when present.
        external_sentiment_score: Provider sentiment score, preferred when present.
            Without a provider label the label follows the score's sign.
        call_status: Final call status; escalation statuses flag escalation.
        metadata: Call metadata; a truthy `escalationTriggered` flags escalation.
        config: Vocabulary and scoring rules.

    Returns:
        ConversationAnalysis with all derived signals.

    Example:
        >>> analysis = analyze_conversation(
        ...     "What's the price? I need this solved before the timeline slips.",
        ...     template_category='lead-qualification-specialist',
        ... )
        >>> analysis.objectivesAchieved
        ['budget_discussed', 'need_identified', 'timeline_established']
        >>> analysis.leadScore
        75
    """
    metadata = metadata or {}
    escalated = bool(metadata.get('escalationTriggered')) or (
        (call_status or '').lower() in config.escalation_statuses
    )

    if not transcript:
        return ConversationAnalysis(escalationTriggered=escalated)

    transcript_lower = transcript.lower()

    sentiment, sentiment_score = score_sentiment(transcript_lower, config)
    if external_sentiment_score is not None:
        sentiment_score = max(-1.0, min(1.0, external_sentiment_score))
        sentiment = sentiment_from_score(sentiment_score)
    if external_sentiment is not None:
        sentiment = external_sentiment

    objectives = detect_objectives(transcript_lower, template_category, config)

    lead_score = 0
    if template_category in config.lead_scoring_categories:
        lead_score = min(100, len(objectives) * config.lead_score_per_objective)

    return ConversationAnalysis(
        sentiment=sentiment,
        sentimentScore=sentiment_score,
        objectivesAchieved=objectives,
        leadScore=lead_score,
        keywordsMentioned=extract_keywords(transcript_lower, config),
        callQualityScore=compute_quality_score(sentiment_score, len(objectives)),
        escalationTriggered=escalated,
        nextSteps=suggest_next_steps(transcript_lower, objectives, config),
    )
