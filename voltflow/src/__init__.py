"""
VoltFlow charging monitor daemon.

Estimates charging wattage, voltage and amperage from coarse battery-level
samples, groups the estimates into charging sessions, keeps a short session
history on disk, and asks an external text-generation service for a short
insight whenever a session ends.

CHANGELOG:
- 2026-10-18: Initial creation

TODO:
- None
"""
