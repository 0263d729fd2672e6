"""
Shared module for code used by the gateway and its tooling.

STRUCTURE:
- shared.config: Configuration
  - settings.py: Environment config (Pydantic)
  - logging.py: Structured logging, security audit logging

- shared.security: Authentication
  - auth.py: JWT signing and verification

- shared.infrastructure: Database and tracing
  - db.py: SQLAlchemy sessions, safe_commit()
  - correlation.py: Request / connection correlation IDs

- shared.models: ORM models for persisted groups and encrypted messages

IMPORT EXAMPLES:
    from shared.config.settings import settings
    from shared.config.logging import get_logger
    from shared.security.auth import verify_jwt
    from shared.infrastructure.db import get_db_context, safe_commit
"""
