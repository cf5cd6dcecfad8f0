# ============================================================================
# VERSION - BATCH ENGINE
# ============================================================================
# EPOCH: 1 - RESILIENT BATCH ENGINE
# ============================================================================
"""
Version information for the Batch Engine.

This is the single source of truth for the application version.
Updated manually for each release.
"""
# Version format: major.minor.patch.build
# Criteria for 0.1 - echo provider completes a job end to end
__version__ = "0.1.0.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Build metadata
BUILD_DATE = "2026-10-18"

EPOCH = 1
CODENAME = "Batch Engine"
