"""
Tables that live inside each tenant's isolated space.

These use their own declarative base, separate from the central store's
db.Model, so they are only ever created in (and queried through) a tenant
engine handed out by TenantSpaceManager. Nothing here carries a tenant_id
column: isolation is structural.
"""
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Table, Text
from sqlalchemy.orm import declarative_base, relationship

TenantBase = declarative_base()

role_permissions = Table(
    'role_permissions',
    TenantBase.metadata,
    Column('role_id', Integer, ForeignKey('roles.id', ondelete='CASCADE'), primary_key=True),
    Column('permission_id', Integer, ForeignKey('permissions.id', ondelete='CASCADE'), primary_key=True),
)


class Permission(TenantBase):
    __tablename__ = 'permissions'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), unique=True, nullable=False)


class Role(TenantBase):
    __tablename__ = 'roles'

    id = Column(Integer, primary_key=True)
    name = Column(String(50), unique=True, nullable=False)

    permissions = relationship('Permission', secondary=role_permissions, lazy='selectin')


class TenantUser(TenantBase):
    __tablename__ = 'users'

    """
    A member of the tenant. role is one of owner/admin/member/viewer; the
    fine-grained permissions come from that role's grants.
    """

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(50), nullable=False, default='member')
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
        }


class Team(TenantBase):
    __tablename__ = 'teams'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class Board(TenantBase):
    __tablename__ = 'boards'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    team_id = Column(Integer, ForeignKey('teams.id', ondelete='SET NULL'), nullable=True)
    created_by = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    is_private = Column(Boolean, nullable=False, default=False)
    color = Column(String(20), nullable=False, default='#3B82F6')
    created_at = Column(DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "team_id": self.team_id,
            "created_by": self.created_by,
            "is_private": self.is_private,
            "color": self.color,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Task(TenantBase):
    __tablename__ = 'tasks'

    id = Column(Integer, primary_key=True)
    board_id = Column(Integer, ForeignKey('boards.id', ondelete='CASCADE'), nullable=False)
    title = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default='todo')
    created_at = Column(DateTime, default=datetime.utcnow)
