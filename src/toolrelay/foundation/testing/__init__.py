"""Testing utilities: scripted model client, recording callbacks, tool builder."""

from .mock import ModelCall, RecordingCallbacks, ScriptedModelClient, make_tool

__all__ = ["ScriptedModelClient", "ModelCall", "RecordingCallbacks", "make_tool"]
