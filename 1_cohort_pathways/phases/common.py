"""
Common imports and utilities for all pipeline phases.
"""

import os
import sys
from datetime import datetime

# Set root of project
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

if project_root not in sys.path:
    sys.path.append(project_root)

from helpers_pathways.constants import SYMBOLS


def phase_context(context, *keys):
    """Pull required keys out of the pipeline context, failing loudly on a missing one."""
    missing = [k for k in keys if k not in context]
    if missing:
        raise KeyError(f"Pipeline context is missing {missing}; was an earlier phase skipped?")
    return [context[k] for k in keys]


__all__ = ['datetime', 'SYMBOLS', 'phase_context']
