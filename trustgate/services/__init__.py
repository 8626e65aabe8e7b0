"""
Gateway Services

- event_store.py - Append-only SQLite event log
- thresholds.py - Per-group threshold map
- ledger.py - Ledger relay adapters
- trend_analysis.py - Trend metrics and decision rules
- fanout.py - Live update hub
- stages.py - Persist-then-publish for lifecycle records
- write_queue.py - Sequential ledger writer with retries
- pipeline.py - Submission coordinator
"""

from .event_store import EventStore
from .fanout import FanoutHub
from .ledger import (
    LedgerAdapter,
    LedgerReceipt,
    DisabledLedgerAdapter,
    HttpLedgerAdapter,
    create_ledger_adapter,
)
from .pipeline import GatewayPipeline, SubmissionResult
from .stages import StageRecorder
from .thresholds import ThresholdStore
from .trend_analysis import DecisionAction, SystemDecision, TrendAnalysis, TrendAnalysisEngine
from .write_queue import WriteQueue
