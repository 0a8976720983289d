"""
Pipeline state management for tracking progress of a pathway run.

Tracks which target cohort units of work completed or failed so reruns can
report what happened, and hands out generation ids that are unique per unit.
"""

import itertools
import json
import logging
import os
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from helpers_pathways.constants import PIPELINE_STATE_FILE
from helpers_pathways.errors import ConfigurationError

# Sequence digits appended to the run timestamp
GENERATION_SEQUENCE_WIDTH = 100000


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class GenerationIdFactory:
    """
    Generation ids = run timestamp (YYYYMMDDHHMMSS) * 100000 + sequence.

    Ids are monotonically increasing within a run and never rely on chance.
    A caller may instead pass explicit ids to the pipeline.
    """

    def __init__(self, run_started_at: Optional[datetime] = None):
        started = run_started_at or datetime.now()
        self.base = int(started.strftime('%Y%m%d%H%M%S')) * GENERATION_SEQUENCE_WIDTH
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def next_id(self) -> int:
        with self._lock:
            sequence = next(self._counter)
        if sequence >= GENERATION_SEQUENCE_WIDTH:
            raise ConfigurationError(
                f"More than {GENERATION_SEQUENCE_WIDTH - 1} generations requested in one run"
            )
        return self.base + sequence


class PipelineState:
    """Track pipeline execution state for one run, persisted as JSON."""

    def __init__(self, pipeline_name: str, entity_id: str, state_dir: str,
                 logger: Optional[logging.Logger] = None):
        """
        Initialize pipeline state tracker.

        Args:
            pipeline_name: Name of pipeline (e.g., 'cohort_pathways')
            entity_id: Unique identifier of the run (e.g., 'targets_1-2')
            state_dir: Local directory holding the state file
            logger: Logger instance
        """
        self.pipeline_name = pipeline_name
        self.entity_id = entity_id.replace('/', '_')
        self.logger = logger or logging.getLogger(__name__)
        self.state_path = os.path.join(state_dir, PIPELINE_STATE_FILE)
        self._lock = threading.Lock()
        self.state = self._load_state()

    def _fresh_state(self) -> Dict[str, Any]:
        return {
            'pipeline_name': self.pipeline_name,
            'entity_id': self.entity_id,
            'created_at': _now(),
            'updated_at': _now(),
            'status': 'running',
            'completed_steps': [],
            'failed_steps': [],
            'metadata': {}
        }

    def _load_state(self) -> Dict[str, Any]:
        """Load existing state from disk or return empty state."""
        if not os.path.exists(self.state_path):
            self.logger.info("📂 No existing state found, starting fresh")
            return self._fresh_state()
        try:
            with open(self.state_path, "r", encoding="utf-8") as f:
                previous = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.warning(f"⚠️ Could not load state: {e}, starting fresh")
            return self._fresh_state()

        self.logger.info(
            f"📂 Previous run state found ({previous.get('status')}, "
            f"{len(previous.get('completed_steps', []))} steps completed); starting fresh"
        )
        state = self._fresh_state()
        state['previous_run'] = {
            'status': previous.get('status'),
            'updated_at': previous.get('updated_at'),
        }
        return state

    def _save_state(self):
        """Save current state to disk."""
        self.state['updated_at'] = _now()
        os.makedirs(os.path.dirname(self.state_path) or ".", exist_ok=True)
        with open(self.state_path, "w", encoding="utf-8") as f:
            json.dump(self.state, f, indent=2, default=str)
        self.logger.debug(f"💾 Saved pipeline state to {self.state_path}")

    def is_step_completed(self, step_name: str) -> bool:
        return any(s['step_name'] == step_name for s in self.state['completed_steps'])

    def mark_step_completed(self, step_name: str, metadata: Optional[Dict] = None):
        """Mark a step as completed with optional metadata."""
        with self._lock:
            if self.is_step_completed(step_name):
                return
            self.state['completed_steps'].append({
                'step_name': step_name,
                'completed_at': _now(),
                'metadata': metadata or {}
            })
            self._save_state()
        self.logger.info(f"✅ Marked step '{step_name}' as completed")

    def mark_step_failed(self, step_name: str, error: str):
        """Mark a step as failed with error details."""
        with self._lock:
            self.state['failed_steps'].append({
                'step_name': step_name,
                'failed_at': _now(),
                'error': str(error)
            })
            self._save_state()
        self.logger.error(f"❌ Marked step '{step_name}' as failed: {error}")

    def mark_pipeline_completed(self, metadata: Optional[Dict] = None):
        """Mark entire pipeline as completed."""
        with self._lock:
            self.state['status'] = 'completed'
            self.state['completed_at'] = _now()
            if metadata:
                self.state['metadata'].update(metadata)
            self._save_state()
        self.logger.info(f"🎉 Pipeline '{self.pipeline_name}' completed for {self.entity_id}")

    def mark_pipeline_failed(self, error: str):
        with self._lock:
            self.state['status'] = 'failed'
            self.state['failed_steps'].append({'step_name': 'pipeline', 'failed_at': _now(), 'error': str(error)})
            self._save_state()

    def get_progress(self) -> Dict[str, Any]:
        """Get current progress summary."""
        return {
            'pipeline_name': self.pipeline_name,
            'entity_id': self.entity_id,
            'status': self.state['status'],
            'completed_steps': len(self.state['completed_steps']),
            'failed_steps': len(self.state['failed_steps']),
            'step_names': [s['step_name'] for s in self.state['completed_steps']]
        }
