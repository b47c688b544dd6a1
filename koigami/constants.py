"""
koigami.constants — Shared Display Constants
=============================================

Single source of truth for presentation strings and sizes shared by the
state store, the API, and the seeder.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Profile defaults
# ---------------------------------------------------------------------------
DEFAULT_PROFILE_NAME = "Builder User"

# ---------------------------------------------------------------------------
# Badge shelf: the display pads unearned slots up to this many
# ---------------------------------------------------------------------------
BADGE_SLOTS = 5

# ---------------------------------------------------------------------------
# Toast text
# ---------------------------------------------------------------------------
LEVEL_UP_MESSAGE = "\U0001f389 Level Up! You're now Level {level}!"  # 🎉

# ---------------------------------------------------------------------------
# Check-in messages
# ---------------------------------------------------------------------------
CHECKIN_OK_MESSAGE = "Checked in! +{xp} XP"
CHECKIN_DUPLICATE_MESSAGE = "Already checked in today"
CHECKIN_NO_PROFILE_MESSAGE = "Profile not found"
CHECKIN_SIGNED_OUT_MESSAGE = "Sign in to check in"
CHECKIN_ERROR_MESSAGE = "Check-in failed. Please try again later."
