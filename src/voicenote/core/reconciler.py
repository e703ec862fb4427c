"""Transcript segment reconciliation.

Merges partial and final recognition results plus user edits into the
ordered, provenance-tagged segment list that backs the document.
"""

from __future__ import annotations

import dataclasses
from typing import Callable, Iterable, List, Optional

from loguru import logger

from .errors import SegmentNotFound
from .models import Provenance, RecognitionEvent, RecognitionEventKind, Segment


SegmentsObserver = Callable[[List[Segment]], None]


class TranscriptSegmentReconciler:
    """
    Authoritative ordered segment list.

    List order is arrival order. At most one provisional segment exists at any
    time; it is replaced in place by partial results and removed when a final
    result arrives, which is always appended at the tail.

    Mutations come only from the single event-processing path on the event
    loop, so no locking is needed.
    """

    def __init__(self, on_change: Optional[SegmentsObserver] = None):
        self._segments: List[Segment] = []
        self._provisional_id: Optional[str] = None
        self._on_change = on_change

    def set_change_callback(self, callback: Optional[SegmentsObserver]):
        """Set callback receiving a snapshot after every mutation"""
        self._on_change = callback

    @property
    def segments(self) -> List[Segment]:
        """Snapshot of all segments in document order"""
        return list(self._segments)

    @property
    def provisional(self) -> Optional[Segment]:
        if self._provisional_id is None:
            return None
        index = self._index_of(self._provisional_id)
        return self._segments[index] if index is not None else None

    def committed_segments(self) -> List[Segment]:
        """Segments eligible for persistence"""
        return [segment for segment in self._segments if not segment.provisional]

    def __len__(self) -> int:
        return len(self._segments)

    def is_empty(self) -> bool:
        return not self.committed_segments()

    def _index_of(self, segment_id: str) -> Optional[int]:
        for i, segment in enumerate(self._segments):
            if segment.id == segment_id:
                return i
        return None

    def _notify(self):
        if self._on_change:
            self._on_change(self.segments)

    # ----- recognition events -----

    def apply(self, event: RecognitionEvent):
        """Apply one recognition event"""
        if event.kind is RecognitionEventKind.PARTIAL:
            self.apply_partial(event.text)
        else:
            self.apply_final(event.text)

    def apply_partial(self, text: str) -> Optional[Segment]:
        """Create or update the provisional segment"""
        text = (text or "").strip()
        if not text:
            return None

        index = self._index_of(self._provisional_id) if self._provisional_id else None
        if index is None:
            segment = Segment(text=text, provenance=Provenance.MACHINE, provisional=True)
            self._segments.append(segment)
            self._provisional_id = segment.id
        else:
            segment = dataclasses.replace(self._segments[index], text=text)
            self._segments[index] = segment

        self._notify()
        return segment

    def apply_final(self, text: str) -> Optional[Segment]:
        """Drop the provisional segment and append the final text at the tail"""
        text = (text or "").strip()
        changed = self._discard_provisional()

        segment = None
        if text:
            segment = Segment(text=text, provenance=Provenance.MACHINE, provisional=False)
            self._segments.append(segment)
            changed = True
            logger.debug(f"Final segment {segment.id}: {text}")

        if changed:
            self._notify()
        return segment

    def add_batch_result(self, text: str) -> Optional[Segment]:
        """Append a whole-recording transcription as one final segment"""
        return self.apply_final(text)

    def _discard_provisional(self) -> bool:
        if self._provisional_id is None:
            return False
        index = self._index_of(self._provisional_id)
        self._provisional_id = None
        if index is None:
            return False
        del self._segments[index]
        return True

    # ----- user edits -----

    def update_segment(
        self,
        segment_id: str,
        new_text: str,
        provenance: Provenance = Provenance.USER,
    ) -> Optional[Segment]:
        """
        Replace one segment's text and provenance in place.

        Empty text removes the segment, since empty segments are never kept.

        Raises:
            SegmentNotFound: no segment has ``segment_id``
        """
        index = self._index_of(segment_id)
        if index is None:
            raise SegmentNotFound(segment_id)

        text = (new_text or "").strip()
        if not text:
            removed = self._segments.pop(index)
            if removed.id == self._provisional_id:
                self._provisional_id = None
            self._notify()
            return None

        # An edited provisional segment is finalized; later partials start a new one
        segment = dataclasses.replace(
            self._segments[index], text=text, provenance=provenance, provisional=False
        )
        if segment.id == self._provisional_id:
            self._provisional_id = None
        self._segments[index] = segment
        self._notify()
        return segment

    def apply_editor_text(self, new_text: str) -> Optional[Segment]:
        """
        Apply the flattened editor contents.

        The editor cannot say which span changed, so edits always land on the
        last segment, which becomes user input. While the text of the earlier
        segments is still an unchanged prefix, only the remainder goes into
        the last segment. Any other edit collapses the whole text into the
        last segment and drops the earlier ones.
        """
        text = (new_text or "").strip()
        if not self._segments:
            if not text:
                return None
            segment = Segment(text=text, provenance=Provenance.USER)
            self._segments.append(segment)
            self._notify()
            return segment

        last = self._segments[-1]
        prefix = " ".join(segment.text for segment in self._segments[:-1])
        if not prefix:
            return self.update_segment(last.id, text, Provenance.USER)

        if text.startswith(prefix + " "):
            return self.update_segment(last.id, text[len(prefix) + 1:], Provenance.USER)
        if text == prefix:
            return self.update_segment(last.id, "", Provenance.USER)

        logger.debug("Edit outside the last segment, collapsing into one user segment")
        if self._provisional_id is not None and self._provisional_id != last.id:
            self._provisional_id = None
        self._segments = [last]
        return self.update_segment(last.id, text, Provenance.USER)

    # ----- bulk operations -----

    def load(self, segments: Iterable[Segment]):
        """Replace the list with already-finalized segments (e.g. a loaded document)"""
        loaded = []
        for segment in segments:
            if not segment.text.strip():
                continue
            if segment.provisional:
                segment = Segment(text=segment.text, provenance=segment.provenance)
            loaded.append(segment)

        self._segments = loaded
        self._provisional_id = None
        self._notify()

    def clear(self):
        """Remove all segments"""
        self._segments = []
        self._provisional_id = None
        self._notify()

    def flatten(self) -> str:
        """Space-joined text of all segments, as shown in the editor"""
        return " ".join(segment.text for segment in self._segments)
