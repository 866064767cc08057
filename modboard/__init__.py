"""
modboard — Moderation Dashboard API for a Discord Community Bot
================================================================
Authenticates moderators with Discord OAuth2, serves per-guild statistics
and moderation views from the bot's PostgreSQL schema, and pushes live
updates to connected dashboards over WebSockets.

Package layout::

    modboard/
    ├── config.py          # env + YAML → typed config
    ├── schemas.py         # Named pydantic records, one per view
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async bridge
    │   └── models.py      # ORM models shared with the bot
    ├── engine/
    │   └── derivations.py # Pure classification / scoring helpers
    ├── services/
    │   ├── aggregation.py     # Guild dashboard views
    │   ├── session_store.py   # Durable browser sessions
    │   ├── broadcast_hub.py   # Guild-scoped WebSocket groups
    │   └── event_relay.py     # Bot → dashboard PG LISTEN/NOTIFY
    └── api/
        ├── main.py        # FastAPI app, health, error bodies
        ├── auth.py        # Discord OAuth2 → session cookie
        ├── deps.py        # Dependency injection + guards
        └── routes/        # Guild REST endpoints + WebSocket
"""

__version__ = "0.1.0"
