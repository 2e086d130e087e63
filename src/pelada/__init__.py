"""
Pelada - Soccer league player service

Backend for a weekly soccer league: rounds, matches, live events and
classification are handled by the front end against the database. This
package holds the server-side pieces that need real decision logic.

Main components:
- players: Player identity linking at signup (tokens, matching, audit)
- db: SQLAlchemy models and session management
- web: FastAPI endpoints
"""

__version__ = "1.0.0"
