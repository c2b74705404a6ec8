"""
Answer ledger and transcript assembly.
"""
import logging
from typing import Dict, Iterator, List, Optional, Tuple

from models.errors import LedgerError
from models.schemas import (
    NO_ANSWER,
    AnswerRecord,
    SessionMetadata,
    SessionSetup,
    Transcript,
    TranscriptItem,
)

logger = logging.getLogger(__name__)


class AnswerLedger:
    """
    One AnswerRecord per visited question index.

    Records are only ever inserted or overwritten, never deleted. Writes are
    accepted for the current question only; the state machine moves the
    focus when it enters a question.
    """

    def __init__(self, questions: List[str], duration_seconds: int):
        self.questions = list(questions)
        self.duration_seconds = duration_seconds
        self.current_index = 0
        self._records: Dict[int, AnswerRecord] = {}

    def focus(self, index: int):
        """Make `index` the question that accepts writes."""
        if not 0 <= index < len(self.questions):
            raise LedgerError(f"Question index {index} out of range")
        self.current_index = index

    def record_answer(
        self,
        index: int,
        text: str,
        audio_uri: Optional[str] = None,
        elapsed_seconds: int = 0,
    ) -> AnswerRecord:
        """
        Upsert the answer for `index`.

        Args:
            index: Question index, must be the current one
            text: Transcribed or typed answer, may be empty
            audio_uri: Recording handle from the capture controller
            elapsed_seconds: Time used, capped at the question duration

        Returns:
            The stored record
        """
        if index != self.current_index:
            raise LedgerError(
                f"Cannot record answer for question {index} while question "
                f"{self.current_index} is current"
            )

        elapsed = max(0, min(int(elapsed_seconds), self.duration_seconds))
        record = AnswerRecord(
            question_text=self.questions[index],
            text=text or "",
            audio_uri=audio_uri,
            elapsed_seconds=elapsed,
        )
        self._records[index] = record
        logger.debug(f"Recorded answer for question {index} ({elapsed}s, {len(record.text)} chars)")
        return record

    def get(self, index: int) -> Optional[AnswerRecord]:
        return self._records.get(index)

    def items(self) -> List[Tuple[int, AnswerRecord]]:
        return sorted(self._records.items())

    def __contains__(self, index: int) -> bool:
        return index in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[int]:
        return iter(sorted(self._records))


class TranscriptAssembler:
    """Folds the ledger and session metadata into the grading payload."""

    @staticmethod
    def assemble(setup: SessionSetup, ledger: AnswerLedger) -> Transcript:
        """
        Pair every question with its recorded answer, in question order.

        Questions without a record get the NO_ANSWER marker and zero elapsed
        time; this never raises.
        """
        items = []
        for index, question in enumerate(setup.questions):
            record = ledger.get(index)
            if record is None:
                logger.warning(f"No answer recorded for question {index}, using empty marker")
                items.append(TranscriptItem(question=question, answer=NO_ANSWER, elapsed_seconds=0))
                continue

            answer = record.text.strip() or NO_ANSWER
            items.append(TranscriptItem(
                question=question,
                answer=answer,
                elapsed_seconds=record.elapsed_seconds,
                audio_uri=record.audio_uri,
            ))

        return Transcript(
            session_metadata=SessionMetadata(
                timer_sec=setup.timer_sec,
                question_count=len(setup.questions),
                tags=setup.metadata_tags,
            ),
            items=items,
        )
