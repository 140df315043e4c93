"""
Deterministic intent matcher.

Scores an utterance against every known script (trigger phrases,
description, tags) and against a fixed action-verb lexicon, then ranks
the surviving candidates and decides whether the top two are too close
to pick automatically.

Usage:
    matcher = Matcher()
    result = matcher.match("calculate my bmi", repository.list())
    if result.top and not result.needs_disambiguation:
        ...
"""

import logging
import re
from typing import Iterable, Optional

from otto.config import MatcherConfig, settings
from otto.schemas.script_schema import ScriptDefinition
from otto.schemas.turn_schema import CandidateKind, MatchCandidate, MatchResult
from otto.utils import normalize_utterance, tokenize

logger = logging.getLogger(__name__)

EXACT_SCORE = 1.0
CONTAINMENT_SCORE = 0.9
PREFIX_SCORE = 0.85


def similarity(a: str, b: str) -> float:
    """
    Similarity of two normalized strings in [0, 1].

    Maximum of exact equality, substring containment in either direction,
    and a token signal (prefix bonus or Jaccard index, numbers ignored).
    """
    if a == b:
        return EXACT_SCORE
    if a in b or b in a:
        return CONTAINMENT_SCORE

    words_a = tokenize(a)
    words_b = tokenize(b)

    prefix_score = 0.0
    for w1 in words_a:
        for w2 in words_b:
            if w1.startswith(w2) or w2.startswith(w1):
                prefix_score = PREFIX_SCORE
                break
        if prefix_score:
            break

    set_a, set_b = set(words_a), set(words_b)
    union = set_a | set_b
    jaccard = len(set_a & set_b) / len(union) if union else 0.0

    return max(prefix_score, jaccard)


class Matcher:
    """Pure, stateless scorer; safe to share across concurrent turns."""

    def __init__(self, config: Optional[MatcherConfig] = None) -> None:
        self._config = config or settings.matcher

    @property
    def config(self) -> MatcherConfig:
        return self._config

    def score_script(self, utterance: str, script: ScriptDefinition) -> float:
        """Confidence that a normalized utterance asks for this script."""
        score = 0.0
        for phrase in script.trigger_phrases:
            score = max(score, similarity(utterance, normalize_utterance(phrase)))

        if script.description:
            desc_score = similarity(utterance, normalize_utterance(script.description))
            score = max(score, desc_score * self._config.description_weight)

        for tag in script.tags:
            tag = normalize_utterance(tag)
            if tag and tag in utterance:
                score = min(1.0, score + self._config.tag_boost)

        return score

    def score_action(self, utterance: str) -> tuple[float, Optional[str]]:
        """Confidence that the utterance asks for an external action.

        Returns:
            (confidence, first recognized verb or None); verbs match whole
            words only, so "together" does not count as "get"
        """
        score = 0.0
        verb: Optional[str] = None
        for candidate in self._config.action_verbs:
            if re.search(rf"\b{re.escape(candidate)}\b", utterance):
                score += self._config.action_verb_weight
                verb = verb or candidate
        return min(1.0, score), verb

    def match(self, utterance: str, scripts: Iterable[ScriptDefinition]) -> MatchResult:
        """Rank every interpretation of an utterance."""
        normalized = normalize_utterance(utterance)
        if not normalized:
            return MatchResult()

        candidates: list[MatchCandidate] = []
        for script in scripts:
            confidence = self.score_script(normalized, script)
            if confidence > self._config.score_floor:
                candidates.append(MatchCandidate(
                    kind=CandidateKind.SCRIPT,
                    confidence=confidence,
                    script_id=script.id,
                ))

        action_confidence, verb = self.score_action(normalized)
        if verb is not None and action_confidence > self._config.action_floor:
            candidates.append(MatchCandidate(
                kind=CandidateKind.ACTION,
                confidence=action_confidence,
                action_verb=verb,
            ))

        # sorted() is stable, so equal scores keep repository order
        candidates = sorted(candidates, key=lambda c: c.confidence, reverse=True)
        top = candidates[0] if candidates else None
        needs_disambiguation = False
        if len(candidates) >= 2:
            # rounded so that e.g. 1.0 vs 0.9 counts as a full 0.1 gap
            gap = round(candidates[0].confidence - candidates[1].confidence, 9)
            needs_disambiguation = gap < self._config.disambiguation_gap

        logger.debug(
            "Matched %r: %d candidates, top=%s, disambiguate=%s",
            normalized, len(candidates),
            f"{top.kind.value}:{top.confidence:.2f}" if top else None,
            needs_disambiguation,
        )
        return MatchResult(
            candidates=candidates,
            top=top,
            needs_disambiguation=needs_disambiguation,
        )

    def top_matches(
        self, utterance: str, scripts: Iterable[ScriptDefinition], n: int = 3
    ) -> list[MatchCandidate]:
        """Return at most ``n`` ranked candidates."""
        return self.match(utterance, scripts).candidates[:n]
