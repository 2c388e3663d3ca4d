"""Chunked minute generation: summarize one transcript window and upsert it.

The pipeline processes exactly one window per call. Which windows to submit,
and when, is decided by the caller (see ChunkScheduler and MinutesGenerator).
Concurrent calls for different (meeting_id, chunk_index) pairs share no
state; repeated calls for the same pair overwrite the stored chunk.
"""

import json
import logging
import math
import re
from typing import List, Optional, Sequence

from pydantic import ValidationError

from ..errors import SummarizationParseError
from ..models import ChunkStatus, ChunkSummary, MeetingInfo, MinuteChunk, TranscriptSegment
from ..storage import MeetingStore
from .engine import ChatCompletionEngine

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are an expert meeting analyst. Provide concise, structured summaries."

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def format_offset(seconds: float) -> str:
    seconds = int(seconds)
    return f"{seconds // 60}:{seconds % 60:02d}"


def build_chunk_prompt(meeting: MeetingInfo, start_time: float, end_time: float,
                       transcript_text: str) -> str:
    minutes = int((end_time - start_time) // 60)
    return f"""Analyze this {minutes}-minute segment of a meeting and provide a concise summary.

Meeting Context:
- Title: {meeting.title or 'N/A'}
- Agenda: {meeting.agenda or 'N/A'}
- Time Range: {format_offset(start_time)} - {format_offset(end_time)}

Transcription Segment:
{transcript_text}

Provide:
1. A brief summary (2-3 sentences) of this segment
2. Key points discussed (bullet points)
3. Any decisions made
4. Any action items identified

Format as JSON:
{{
  "summary": "...",
  "key_points": ["...", "..."],
  "decisions": ["...", "..."],
  "action_items": ["...", "..."]
}}"""


def parse_chunk_summary(raw_text: str) -> ChunkSummary:
    """Parse the service response into a ChunkSummary.

    The whole text is tried first, then the outermost {...} block inside it.

    Raises:
        SummarizationParseError: No valid summary object could be extracted
    """
    candidates = [raw_text]
    match = _JSON_OBJECT.search(raw_text or "")
    if match and match.group(0) != raw_text:
        candidates.append(match.group(0))

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except (TypeError, ValueError):
            continue
        if not isinstance(data, dict):
            continue
        try:
            return ChunkSummary.model_validate(data)
        except ValidationError as e:
            raise SummarizationParseError(f"Summary object has unexpected shape: {e}", raw_text) from e

    raise SummarizationParseError("No JSON object found in summarization response", raw_text)


class ChunkedMinuteGenerator:
    """Summarizes single transcript windows into persisted MinuteChunks."""

    def __init__(self, store: MeetingStore, engine: ChatCompletionEngine, temperature: float = 0.3):
        self.store = store
        self.engine = engine
        self.temperature = temperature

    async def process_chunk(self, meeting_id: str, chunk_index: int, start_time: float,
                            end_time: float, transcript_text: str) -> MinuteChunk:
        """Summarize the window [start_time, end_time) and upsert the chunk.

        Raises:
            ValueError: Missing transcript text or an empty window
            SummarizationError: The summarization call itself failed
        """
        if not transcript_text or not transcript_text.strip():
            raise ValueError("transcript_text is required")
        if end_time <= start_time:
            raise ValueError(f"Invalid window [{start_time}, {end_time})")

        logger.info(f"Processing chunk {chunk_index} for meeting {meeting_id} "
                    f"({start_time:.0f}s - {end_time:.0f}s)")

        meeting = self.store.get_meeting(meeting_id) or MeetingInfo(meeting_id=meeting_id)
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_chunk_prompt(meeting, start_time, end_time, transcript_text)},
        ]
        raw_text = await self.engine.send_messages(
            messages, temperature=self.temperature, response_format={"type": "json_object"})

        try:
            summary = parse_chunk_summary(raw_text)
        except SummarizationParseError as e:
            logger.warning(f"Chunk {chunk_index}: {e}; storing raw response as summary")
            summary = ChunkSummary(summary=e.raw_text)

        chunk = MinuteChunk(
            meeting_id=meeting_id,
            chunk_index=chunk_index,
            start_time=start_time,
            end_time=end_time,
            transcript_text=transcript_text,
            summary=summary.summary,
            key_points=list(summary.key_points),
            decisions=list(summary.decisions),
            action_items=list(summary.action_items),
        )
        self.store.upsert_chunk(chunk)
        logger.info(f"Chunk {chunk_index} generated and stored")
        return chunk


def chunk_statuses(recording_seconds: float, chunk_duration_seconds: int,
                   chunks: Sequence[MinuteChunk]) -> List[ChunkStatus]:
    """Every window of a recording, marked completed when a chunk exists for it."""
    if chunk_duration_seconds <= 0:
        raise ValueError("chunk_duration_seconds must be positive")
    by_index = {c.chunk_index: c for c in chunks}
    total = math.ceil(recording_seconds / chunk_duration_seconds) if recording_seconds > 0 else 0

    statuses = []
    for index in range(total):
        existing: Optional[MinuteChunk] = by_index.get(index)
        statuses.append(ChunkStatus(
            chunk_index=index,
            start_time=index * chunk_duration_seconds,
            end_time=min((index + 1) * chunk_duration_seconds, recording_seconds),
            status="completed" if existing else "pending",
            summary=existing.summary if existing else None,
            generated_at=existing.generated_at if existing else None,
        ))
    return statuses


def overall_progress(statuses: Sequence[ChunkStatus]) -> int:
    """Completed windows as an integer percentage."""
    if not statuses:
        return 0
    completed = sum(1 for s in statuses if s.status == "completed")
    return int(completed * 100 / len(statuses))


def format_transcript(segments: Sequence[TranscriptSegment]) -> str:
    """Window text as `speaker: text` lines."""
    return "\n".join(f"{s.speaker}: {s.text}" for s in segments)
