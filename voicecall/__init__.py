"""
VoiceCall
=========

Event normalization and transcript reconciliation core for a live
voice-conversation client.

Features:
- Total, pure normalization of noisy voice-transport SDK payloads
- Ordered transcript with partial -> final turn lifecycle
- Deterministic call lifecycle reducer with guarded user commands
- Speaker activity tracking for live status display
- Read-only view model and a small HTTP control surface

Version: 0.3.0
"""

__version__ = "0.3.0"
__license__ = "MIT"

import logging

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())
