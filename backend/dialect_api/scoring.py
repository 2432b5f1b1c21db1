"""
Speech Scoring
==============

Deterministic scores for a transcribed utterance, compared against the text
the learner was asked to say. Nothing here performs I/O; every function is a
plain computation over strings and timing metadata.

Scores (all in [0.0, 1.0]):
- accuracy: normalized Levenshtein similarity between transcript and expected text
- confidence: transcript length and "clarity" (share of non-special characters)
- pronunciation: mean of accuracy and confidence
- fluency: speaking-rate band derived from word count and audio duration

`compute_scores` evaluates them in dependency order
(accuracy -> confidence -> pronunciation -> fluency) and returns all four
together.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


# Speaking-rate bands (words per minute, inclusive)
OPTIMAL_WPM = (150.0, 200.0)
ACCEPTABLE_WPM = (100.0, 250.0)

NEUTRAL_FLUENCY = 0.5
# Transcripts this long (in words) get the full length component of confidence
CONFIDENCE_WORD_TARGET = 10.0


@dataclass(frozen=True)
class SessionScores:
	confidence: float
	accuracy: float
	pronunciation: float
	fluency: float


def word_count(text: Optional[str]) -> int:
	"""Number of whitespace-delimited tokens in `text`."""
	return len((text or "").split())


def levenshtein_distance(a: str, b: str) -> int:
	"""Minimum number of single-character edits turning `a` into `b`.

	Classic dynamic programme kept to two rows; symmetric in its arguments.
	"""
	if a == b:
		return 0
	if not a:
		return len(b)
	if not b:
		return len(a)
	previous = list(range(len(b) + 1))
	for i, ca in enumerate(a, start=1):
		current = [i]
		for j, cb in enumerate(b, start=1):
			current.append(min(
				previous[j] + 1,
				current[j - 1] + 1,
				previous[j - 1] + (0 if ca == cb else 1),
			))
		previous = current
	return previous[-1]


def accuracy_score(transcribed: Optional[str], expected: Optional[str]) -> float:
	"""Similarity between what was said and what was expected.

	Both strings are lowercased and trimmed. Identical normalized strings
	(including two empty strings) score 1.0 without computing the distance;
	otherwise the score is ``1 - distance / max(len(a), len(b))``.

	Args:
		transcribed: Text returned by speech recognition
		expected: Reference utterance supplied by the caller

	Returns:
		Score in [0.0, 1.0]; 0.0 when either side is missing
	"""
	if transcribed is None or expected is None:
		return 0.0
	a = transcribed.lower().strip()
	b = expected.lower().strip()
	if a == b:
		return 1.0
	longest = max(len(a), len(b))
	if longest == 0:
		return 1.0
	return 1.0 - levenshtein_distance(a, b) / longest


def confidence_score(transcribed: Optional[str]) -> float:
	"""Heuristic confidence in a transcript.

	Averages a length component (``min(1, words / 10)``) with a clarity
	component (``max(0, 1 - special / total)``), where a special character is
	anything that is neither alphanumeric nor whitespace.

	Args:
		transcribed: Transcript text, possibly empty or None

	Returns:
		Score in [0.0, 1.0]; 0.0 for an empty or blank transcript
	"""
	if transcribed is None or not transcribed.strip():
		return 0.0
	length_score = min(1.0, word_count(transcribed) / CONFIDENCE_WORD_TARGET)
	special = sum(1 for ch in transcribed if not ch.isalnum() and not ch.isspace())
	clarity_score = max(0.0, 1.0 - special / len(transcribed))
	return (length_score + clarity_score) / 2.0


def pronunciation_score(accuracy: float, confidence: float) -> float:
	return (accuracy + confidence) / 2.0


def fluency_score(transcribed: Optional[str], duration_ms: Optional[int]) -> float:
	"""Score the speaking rate.

	1.0 inside 150-200 wpm, 0.8 inside 100-250 wpm, 0.6 otherwise. A missing
	transcript or a missing/zero duration yields the neutral 0.5.
	"""
	if transcribed is None or not duration_ms or duration_ms <= 0:
		return NEUTRAL_FLUENCY
	words_per_minute = word_count(transcribed) * 60000.0 / duration_ms
	if OPTIMAL_WPM[0] <= words_per_minute <= OPTIMAL_WPM[1]:
		return 1.0
	if ACCEPTABLE_WPM[0] <= words_per_minute <= ACCEPTABLE_WPM[1]:
		return 0.8
	return 0.6


def compute_scores(transcribed: str, expected: str, duration_ms: Optional[int]) -> SessionScores:
	# Order matters: pronunciation is derived from the first two
	accuracy = accuracy_score(transcribed, expected)
	confidence = confidence_score(transcribed)
	pronunciation = pronunciation_score(accuracy, confidence)
	fluency = fluency_score(transcribed, duration_ms)
	return SessionScores(
		confidence=confidence,
		accuracy=accuracy,
		pronunciation=pronunciation,
		fluency=fluency,
	)
