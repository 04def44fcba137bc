"""Voice call core: normalizer, reconciler, lifecycle reducer, router.

Modules are imported directly (``from voicecall.voice.normalizer import
normalize``); nothing is re-exported here so that shared.config can import
the reducer without pulling in the router.
"""
