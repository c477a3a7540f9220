from __future__ import annotations
from flask import Blueprint, request, abort
from flask_jwt_extended import create_access_token, jwt_required, get_jwt_identity, get_jwt
from sqlalchemy import select
from repairdesk import get_db
from repairdesk.models.user import User
from repairdesk.constants.permissions import permissions_for_role

auth_bp = Blueprint('auth', __name__)


@auth_bp.post('/login')
def login():
    data = request.json or {}
    email = data.get('email'); password = data.get('password')
    if not email or not password:
        abort(400, description='email & password required')
    session = get_db()
    user = session.execute(select(User).where(User.email==email)).scalar_one_or_none()
    if not user or not user.verify_password(password):
        abort(401, description='invalid credentials')
    if not user.is_active:
        abort(403, description='user inactive')
    claims = {
        'roles': [user.role],
        'perms': permissions_for_role(user.role),
    }
    # JWT identity must be a string (flask-jwt-extended v4 requirement)
    token = create_access_token(identity=str(user.id), additional_claims=claims)
    return {'access_token': token}


@auth_bp.get('/me')
@jwt_required()
def me():
    user_id = int(get_jwt_identity())
    session = get_db()
    user = session.get(User, user_id)
    if not user:
        abort(404)
    return {
        'id': user.id,
        'name': user.name,
        'email': user.email,
        'role': user.role,
        'perms': get_jwt().get('perms', []),
    }
