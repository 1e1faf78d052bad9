"""
Gaze System Coordinator
Shared time reference for frame processing and sample timestamps
"""

from .clock import CentralClock

__all__ = [
    'CentralClock',
]
