"""Test helper utilities for HOA notification tests."""

from .clock import FakeClock
from .fake_adapter import RecordingAdapter, build_fake_adapters

__all__ = ["FakeClock", "RecordingAdapter", "build_fake_adapters"]
