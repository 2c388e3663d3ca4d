"""Keyword-based chapter segmentation of the live transcript."""

import logging
from typing import List, Optional, Sequence, Tuple

from ..models import Chapter, ChapterCandidate, ChapterType, TranscriptSegment
from ..storage import MeetingStore

logger = logging.getLogger(__name__)

INTRO_KEYWORDS = ('welcome', 'introduction', 'hello everyone', "let's begin", 'start meeting',
                  'good morning', 'good afternoon')
DISCUSSION_KEYWORDS = ('discuss', 'talk about', 'regarding', 'concerning', "let's review",
                       'budget', 'project', 'strategy')
DECISION_KEYWORDS = ('decide', 'decision', 'approve', 'agreed', 'consensus', 'vote', 'conclude that')
ACTION_KEYWORDS = ('action item', 'task', 'assign', 'responsibility', 'next step', 'follow up', 'deadline')
CONCLUSION_KEYWORDS = ('wrap up', 'summarize', 'in conclusion', 'to conclude', 'final thoughts', "that's all")

# Checked in order; discussion comes last because its keywords are the broadest
RULES: List[Tuple[ChapterType, Sequence[str], Optional[str], float]] = [
    (ChapterType.INTRO, INTRO_KEYWORDS, 'Introductions', 0.9),
    (ChapterType.DECISION, DECISION_KEYWORDS, 'Key Decision', 0.85),
    (ChapterType.ACTION, ACTION_KEYWORDS, 'Action Items', 0.85),
    (ChapterType.CONCLUSION, CONCLUSION_KEYWORDS, 'Conclusion', 0.9),
    (ChapterType.DISCUSSION, DISCUSSION_KEYWORDS, None, 0.75),
]

TOPICS = [
    (('budget', 'financial', 'cost'), 'Budget Discussion'),
    (('project', 'initiative', 'program'), 'Project Review'),
    (('strategy', 'plan', 'roadmap'), 'Strategy Planning'),
]


def extract_topic(text: str) -> str:
    """Title of a discussion chapter."""
    for keywords, title in TOPICS:
        if any(kw in text for kw in keywords):
            return title
    return 'Discussion'


def classify(text: str) -> Optional[ChapterCandidate]:
    """Classify a transcript window; None when no keyword set matches."""
    text = (text or '').lower()
    for chapter_type, keywords, title, confidence in RULES:
        if any(kw in text for kw in keywords):
            return ChapterCandidate(
                title=title or extract_topic(text),
                type=chapter_type,
                confidence=confidence,
            )
    return None


class ChapterSegmentationEngine:
    """Decides whether a window of recent transcript opens a new chapter."""

    def __init__(self, store: MeetingStore, min_confidence: float = 0.7, history_size: int = 5):
        self.store = store
        self.min_confidence = min_confidence
        self.history_size = history_size

    def should_create(self, candidate: ChapterCandidate, previous: Optional[Chapter]) -> bool:
        if candidate.confidence < self.min_confidence:
            return False
        return previous is None or previous.title != candidate.title

    def process(self, meeting_id: str, recent_segments: Sequence[TranscriptSegment]) -> Optional[Chapter]:
        """Classify the window and persist a chapter when it passes both checks.

        Returns the new chapter, or None when nothing was created.
        """
        if not recent_segments:
            return None

        text = ' '.join(s.text for s in recent_segments)
        candidate = classify(text)
        if candidate is None:
            return None

        history = self.store.recent_chapters(meeting_id, limit=self.history_size)
        previous = history[0] if history else None
        if not self.should_create(candidate, previous):
            logger.debug(f"Chapter candidate '{candidate.title}' skipped "
                         f"(confidence={candidate.confidence}, previous={previous.title if previous else None})")
            return None

        chapter = Chapter(
            meeting_id=meeting_id,
            title=candidate.title,
            timestamp=recent_segments[-1].timestamp,
            type=candidate.type,
            confidence=candidate.confidence,
            segment_id=recent_segments[0].segment_id,
        )
        self.store.insert_chapter(chapter)
        logger.info(f"New chapter '{chapter.title}' ({chapter.type.value}) at {chapter.timestamp:.0f}s")
        return chapter
