"""
Outcome of one batch sweep
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class SweepResult:
    """Counters and per-item errors of a sweep; errors never abort the batch"""
    name: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    processed: int = 0
    triggered: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    def add_error(self, message: str):
        self.errors.append(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'processed': self.processed,
            'triggered': self.triggered,
            'skipped': self.skipped,
            'errors': list(self.errors)
        }
