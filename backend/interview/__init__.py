# Interview module
# InterviewStateMachine: import from interview.state
from .events import EventKind, EventLog, SessionEvent
from .states import SessionStates
from .timer import CountdownTimer
from .ledger import AnswerLedger, TranscriptAssembler
from .grading import GradeValidator
