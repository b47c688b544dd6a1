"""
Koigami — Gamification Engine for the Koi/Dragon Social Network
================================================================
Tracks XP, levels and badges for community members, reconciles the
client-side view of a member's progress against server-pushed profile
changes, and surfaces short-lived "XP gained" / "level up" notifications.

Package layout::

    koigami/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Display constants (badge slots, toast text)
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # Profiles, badges, daily check-ins
    │   └── seed.py        # Default badge catalogue
    ├── engine/
    │   ├── ranks.py       # Rank table + rank resolver
    │   ├── actions.py     # XP action catalogue, bonuses, image quotas
    │   ├── notifications.py # Single-slot XP toast emitter
    │   ├── listener.py    # PG LISTEN/NOTIFY profile change fan-out
    │   └── store.py       # Per-identity gamification state store
    ├── services/
    │   ├── backend.py     # Backend contract + record types
    │   ├── sql_backend.py # SQLAlchemy implementation of the contract
    │   ├── xp_service.py  # XP grants, level-up bonuses, daily check-in
    │   └── badge_loader.py # Awarded-badge fetch + snapshot replacement
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # JWT identity + dependency wiring
        ├── sessions.py    # Live store per signed-in member
        └── routes/        # Gamification endpoints
"""

__version__ = "0.1.0"
