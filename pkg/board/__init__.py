# Board system: sticky notes, kanban tasks and calendar entries per user
#
# Components:
#   schema.py      - Data model (StickyNote, BoardTask, CalendarEntry, User)
#   validation.py  - Payload / patch validation against field schemas
#   errors.py      - Error taxonomy shared by stores and the HTTP layer
#   guard.py       - Ownership checks
#   store.py       - SQLite persistence layer with per-scope dense ordering
#   auth.py        - Password hashing and bearer token handling
#   config.py      - YAML configuration
#   client.py      - HTTP client for the board API
#   cache.py       - Optimistic client-side mirror with reconciliation
