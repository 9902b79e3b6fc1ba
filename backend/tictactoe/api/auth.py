from datetime import datetime

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from tictactoe import db
from tictactoe.auth import issue_token
from tictactoe.errors import AuthenticationError, ValidationError
from tictactoe.models import User
from tictactoe.validation import validate_change_password, validate_login, validate_profile_update, validate_registration

auth = Blueprint('auth', __name__)


def _taken_field(username=None, email=None, exclude_id=None):
    clauses = []
    if username:
        clauses.append(User.username == username)
    if email:
        clauses.append(User.email == email)
    if not clauses:
        return None
    query = User.query.filter(or_(*clauses))
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)
    existing = query.first()
    if existing is None:
        return None
    return 'email' if email and existing.email == email else 'username'


@auth.route('/register', methods=['POST'])
def register():
    data = validate_registration(request.get_json(silent=True))
    field = _taken_field(data['username'], data['email'])
    if field:
        raise ValidationError(f'User with this {field} already exists')

    user = User(username=data['username'], email=data['email'])
    user.set_password(data['password'])
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError('User already exists')
    current_app.logger.info(f"[register] user={user.id} username={user.username}")
    return jsonify({'success': True, 'token': issue_token(user.id), 'user': user.to_dict()}), 201


@auth.route('/login', methods=['POST'])
def login():
    data = validate_login(request.get_json(silent=True))
    login_field = data['login']
    user = User.query.filter(or_(User.username == login_field, User.email == login_field.lower())).first()
    if user is None or not user.check_password(data['password']):
        raise AuthenticationError('Invalid credentials')
    if not user.is_active:
        raise AuthenticationError('Account is deactivated')

    user.last_login = datetime.utcnow()
    db.session.commit()
    current_app.logger.info(f"[login] user={user.id}")
    return jsonify({'success': True, 'token': issue_token(user.id), 'user': user.to_dict()})


@auth.route('/profile', methods=['GET'])
@login_required
def get_profile():
    return jsonify({'success': True, 'user': current_user.to_dict()})


@auth.route('/profile', methods=['PUT'])
@login_required
def update_profile():
    updates = validate_profile_update(request.get_json(silent=True))
    field = _taken_field(updates.get('username'), updates.get('email'), exclude_id=current_user.id)
    if field:
        raise ValidationError(f'{field} is already taken')

    user = current_user._get_current_object()
    for key, value in updates.items():
        setattr(user, key, value)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError('Username or email is already taken')
    return jsonify({'success': True, 'user': user.to_dict()})


@auth.route('/change-password', methods=['PUT'])
@login_required
def change_password():
    data = validate_change_password(request.get_json(silent=True))
    user = current_user._get_current_object()
    if not user.check_password(data['current_password']):
        raise ValidationError('Current password is incorrect')
    user.set_password(data['new_password'])
    db.session.commit()
    current_app.logger.info(f"[password-changed] user={user.id}")
    return jsonify({'success': True, 'message': 'Password changed successfully'})
