"""Event normalizer: raw transport payload -> CanonicalEvent.

Contract:
    event = normalize(raw)

Rules:
    1. Total -- never raises; every failure becomes Unrecognized.
    2. Pure -- the only side effect is debug logging.
    3. Per-discriminator extraction rules run first, in priority order.
       When all of them miss, a generic scan over fixed field-priority
       lists looks for utterance text and role.
    4. Finality defaults to final. Only an explicit partial marker makes
       a fragment partial.
"""
from __future__ import annotations

import logging
import math
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

from .call_events import (
    CallEnded,
    CallStarted,
    CanonicalEvent,
    ErrorRaised,
    Role,
    SpeechEnded,
    SpeechStarted,
    TranscriptFragment,
    TranscriptReplay,
    Unrecognized,
    VolumeSample,
)
from .errors import MalformedEvent

logger = logging.getLogger("voicecall.normalizer")

RawEvent = Any
Path = Tuple[str, ...]

# ── Field vocabularies ───────────────────────────────────────────────────

DISCRIMINATOR_FIELDS: Tuple[str, ...] = ("type", "event")

# Generic scan: candidate utterance fields, highest priority first.
TEXT_FIELDS: Tuple[str, ...] = (
    "transcript", "text", "content", "inputText", "input", "message", "utterance",
)

# Wrapper keys searched (one level deep) after the top level.
WRAPPER_KEYS: Tuple[str, ...] = ("transcript", "status", "payload", "data", "message")

ROLE_ALIASES: Dict[str, Role] = {
    "user": Role.USER,
    "customer": Role.USER,
    "human": Role.USER,
    "assistant": Role.ASSISTANT,
    "bot": Role.ASSISTANT,
    "agent": Role.ASSISTANT,
    "ai": Role.ASSISTANT,
}

FINAL_FLAG_FIELDS: Tuple[str, ...] = ("final", "isFinal")
FINALITY_MARKER_FIELDS: Tuple[str, ...] = ("transcriptType", "status")
PARTIAL_MARKERS: frozenset[str] = frozenset(["partial", "interim", "started"])

VOLUME_FIELDS: Tuple[str, ...] = ("volume", "level", "value", "payload")
REPLAY_ARRAY_FIELDS: Tuple[str, ...] = ("conversation", "messages", "messagesOpenAIFormatted")
REPLAY_TEXT_PATHS: Tuple[Path, ...] = (("content",), ("message",), ("text",), ("transcript",))

DEFAULT_ERROR_MESSAGE = "Unknown transport error"

# Ordered text extraction rules per transcript-bearing discriminator.
TEXT_RULES: Dict[str, Tuple[Path, ...]] = {
    "transcript": (("transcript",), ("text",), ("transcript", "text"), ("content",)),
    "voice-input": (("inputText",), ("input",), ("text",)),
    "speech-update": (("transcript",), ("status", "transcript"), ("text",)),
    "status-update": (("transcript",), ("status", "transcript"), ("text",)),
}

# voice-input carries the text the assistant is about to speak.
DEFAULT_ROLES: Dict[str, Role] = {
    "voice-input": Role.ASSISTANT,
}


# ── Lookup helpers ───────────────────────────────────────────────────────

def _lookup(payload: Mapping, path: Path) -> Any:
    node: Any = payload
    for key in path:
        if not isinstance(node, Mapping):
            return None
        node = node.get(key)
    return node


def _first_string(payload: Mapping, paths: Sequence[Path]) -> Optional[str]:
    """Return the first string found along paths, in order (empty allowed)."""
    for path in paths:
        value = _lookup(payload, path)
        if isinstance(value, str):
            return value
    return None


def _layers(payload: Mapping) -> list:
    layers = [payload]
    for key in WRAPPER_KEYS:
        inner = payload.get(key)
        if isinstance(inner, Mapping):
            layers.append(inner)
    return layers


def _scan_text(payload: Mapping) -> Optional[str]:
    """Generic scan for non-blank utterance text, top level then wrappers."""
    for layer in _layers(payload):
        for name in TEXT_FIELDS:
            value = layer.get(name)
            if isinstance(value, str) and value.strip():
                return value
    return None


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return False


def _extract_role(payload: Mapping) -> Optional[Role]:
    """Explicit role first (top level, then wrappers), else presence flags."""
    layers = _layers(payload)
    for layer in layers:
        value = layer.get("role")
        if isinstance(value, Role):
            return value
        if isinstance(value, str):
            role = ROLE_ALIASES.get(value.strip().lower())
            if role is not None:
                return role
    for layer in layers:
        is_user = _truthy(layer.get("user"))
        is_assistant = _truthy(layer.get("assistant"))
        if is_user != is_assistant:
            return Role.USER if is_user else Role.ASSISTANT
    return None


def _extract_final(payload: Mapping) -> bool:
    """Explicit boolean flag wins; otherwise only partial markers mean partial."""
    for layer in _layers(payload):
        for name in FINAL_FLAG_FIELDS:
            value = layer.get(name)
            if isinstance(value, bool):
                return value
    for name in FINALITY_MARKER_FIELDS:
        value = payload.get(name)
        if isinstance(value, str):
            return value.strip().lower() not in PARTIAL_MARKERS
    return True


def _discriminator(payload: Mapping) -> str:
    for name in DISCRIMINATOR_FIELDS:
        value = payload.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip().lower().replace("_", "-")
    return ""


def _unwrap(raw: RawEvent) -> Mapping:
    if not isinstance(raw, Mapping):
        raise MalformedEvent(f"not_a_mapping:{type(raw).__name__}", raw)
    if _discriminator(raw) == "message":
        for key in ("message", "payload"):
            inner = raw.get(key)
            if isinstance(inner, Mapping):
                return inner
    return raw


# ── Discriminator handlers ───────────────────────────────────────────────

def _call_started(payload: Mapping) -> CanonicalEvent:
    return CallStarted()


def _call_ended(payload: Mapping) -> CanonicalEvent:
    return CallEnded()


def _error(payload: Mapping) -> CanonicalEvent:
    return ErrorRaised(message=_error_message(payload))


def _error_message(payload: Mapping) -> str:
    candidates: list = []
    error = payload.get("error")
    if isinstance(error, Mapping):
        candidates.extend(error.get(k) for k in ("message", "msg", "errorMsg"))
        nested = error.get("error")
        if isinstance(nested, Mapping):
            candidates.append(nested.get("message"))
        else:
            candidates.append(nested)
    else:
        candidates.append(error)
    candidates.extend(payload.get(k) for k in ("message", "errorMsg"))
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return DEFAULT_ERROR_MESSAGE


def _speech(started: bool) -> Callable[[Mapping], CanonicalEvent]:
    def handler(payload: Mapping) -> CanonicalEvent:
        role = _extract_role(payload) or Role.ASSISTANT
        return SpeechStarted(role) if started else SpeechEnded(role)
    return handler


def _volume(payload: Mapping) -> CanonicalEvent:
    for name in VOLUME_FIELDS:
        value = payload.get(name)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise MalformedEvent(f"volume:non_numeric:{name}", payload)
        level = float(value)
        if not math.isfinite(level):
            raise MalformedEvent("volume:not_finite", payload)
        return VolumeSample(level=min(1.0, max(0.0, level)))
    raise MalformedEvent("volume:missing_level", payload)


def _speech_status(payload: Mapping) -> Optional[CanonicalEvent]:
    status = payload.get("status")
    if not isinstance(status, str):
        return None
    status = status.strip().lower()
    role = _extract_role(payload) or Role.ASSISTANT
    if status == "started":
        return SpeechStarted(role)
    if status in ("stopped", "ended"):
        return SpeechEnded(role)
    return None


def _call_status(payload: Mapping) -> Optional[CanonicalEvent]:
    status = payload.get("status")
    if not isinstance(status, str):
        return None
    status = status.strip().lower()
    if status == "ended":
        return CallEnded()
    if status == "in-progress":
        return CallStarted()
    return None


STATUS_FALLBACKS: Dict[str, Callable[[Mapping], Optional[CanonicalEvent]]] = {
    "speech-update": _speech_status,
    "status-update": _call_status,
}


def _transcript(discriminator: str) -> Callable[[Mapping], CanonicalEvent]:
    rules = TEXT_RULES[discriminator]

    def handler(payload: Mapping) -> CanonicalEvent:
        text = _first_string(payload, rules)
        if text is None:
            fallback = STATUS_FALLBACKS.get(discriminator)
            if fallback is not None:
                event = fallback(payload)
                if event is not None:
                    return event
            text = _scan_text(payload)
        if text is None:
            raise MalformedEvent(f"{discriminator}:no_text", payload)
        role = _extract_role(payload) or DEFAULT_ROLES.get(discriminator)
        if role is None:
            raise MalformedEvent(f"{discriminator}:no_role", payload)
        return TranscriptFragment(role=role, text=text, final=_extract_final(payload))

    return handler


def _conversation_update(payload: Mapping) -> CanonicalEvent:
    entries = None
    for name in REPLAY_ARRAY_FIELDS:
        value = payload.get(name)
        if isinstance(value, (list, tuple)):
            entries = value
            break
    if entries is None:
        return _generic(payload)

    fragments = []
    skipped = 0
    for entry in entries:
        if not isinstance(entry, Mapping):
            skipped += 1
            continue
        role = _extract_role(entry)
        text = _first_string(entry, REPLAY_TEXT_PATHS)
        if role is None or text is None or not text.strip():
            skipped += 1
            continue
        fragments.append(TranscriptFragment(role=role, text=text, final=True))

    if skipped:
        logger.debug("conversation-update: skipped %d unusable entries", skipped)
    if not fragments:
        raise MalformedEvent("conversation-update:no_turns", payload)
    return TranscriptReplay(fragments=tuple(fragments))


def _generic(payload: Mapping) -> CanonicalEvent:
    text = _scan_text(payload)
    if text is None:
        raise MalformedEvent("generic:no_text", payload)
    role = _extract_role(payload)
    if role is None:
        raise MalformedEvent("generic:no_role", payload)
    return TranscriptFragment(role=role, text=text, final=_extract_final(payload))


HANDLERS: Dict[str, Callable[[Mapping], CanonicalEvent]] = {
    "call-start": _call_started,
    "call-started": _call_started,
    "call-end": _call_ended,
    "call-ended": _call_ended,
    "error": _error,
    "speech-start": _speech(started=True),
    "speech-end": _speech(started=False),
    "volume-level": _volume,
    "volume": _volume,
    "transcript": _transcript("transcript"),
    "voice-input": _transcript("voice-input"),
    "speech-update": _transcript("speech-update"),
    "status-update": _transcript("status-update"),
    "conversation-update": _conversation_update,
}


# ── Entry point ──────────────────────────────────────────────────────────

def normalize(raw: RawEvent) -> CanonicalEvent:
    """Map one raw transport payload to exactly one CanonicalEvent."""
    try:
        payload = _unwrap(raw)
        handler = HANDLERS.get(_discriminator(payload), _generic)
        return handler(payload)
    except MalformedEvent as exc:
        logger.debug("normalize: unrecognized payload reason=%s", exc.reason)
        return Unrecognized(raw=raw, reason=exc.reason)
    except Exception as exc:
        logger.warning("normalize: extraction fault %s: %s", type(exc).__name__, exc)
        return Unrecognized(raw=raw, reason=f"extraction_fault:{type(exc).__name__}")
