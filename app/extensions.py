from flask_sqlalchemy import SQLAlchemy
from flask_jwt_extended import JWTManager

from app.services.tenant_spaces import TenantSpaceManager

"""
Flask Extensions - Initialized here, configured in app/__init__.py

Why separate file?
- Avoids circular imports
- Extensions need to be created before app, but configured after
- Makes testing easier (can mock extensions)
"""
# Central store ORM - tenants, plans, subscription events
# Usage: from app.extensions import db


db = SQLAlchemy()

# JWT Authentication - tenant user login tokens
# Usage: from app.extensions import jwt

jwt = JWTManager()

# Per-tenant isolated databases/schemas
# Usage: from app.extensions import tenant_spaces

tenant_spaces = TenantSpaceManager()
