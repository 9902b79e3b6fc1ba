from datetime import datetime

from flask_login import UserMixin

from tictactoe import db, bcrypt


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(30), unique=True, nullable=False, index=True)
    email = db.Column(db.String(254), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(128), nullable=False)
    wins = db.Column(db.Integer, default=0, nullable=False, index=True)
    losses = db.Column(db.Integer, default=0, nullable=False)
    draws = db.Column(db.Integer, default=0, nullable=False)
    total_games = db.Column(db.Integer, default=0, nullable=False, index=True)
    avatar = db.Column(db.String(512), nullable=True)
    bio = db.Column(db.String(200), default='', nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    last_login = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    @property
    def win_rate(self):
        if not self.total_games:
            return 0
        return round(self.wins / self.total_games * 100)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
            'email': self.email,
            'wins': self.wins,
            'losses': self.losses,
            'draws': self.draws,
            'total_games': self.total_games,
            'win_rate': self.win_rate,
            'avatar': self.avatar,
            'bio': self.bio,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'last_login': self.last_login.isoformat() if self.last_login else None,
        }

    def to_summary(self):
        return {'id': self.id, 'username': self.username, 'avatar': self.avatar}


SESSION_TYPES = ('guest', 'authenticated', 'mixed')
ROUND_WINNERS = ('player1', 'player2', 'draw')


class GameSession(db.Model):
    """Everything two named players played in one room, across rounds."""

    __tablename__ = 'game_session'
    id = db.Column(db.Integer, primary_key=True)
    player1_name = db.Column(db.String(50), nullable=False)
    player2_name = db.Column(db.String(50), nullable=False)
    player1_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='SET NULL'), nullable=True, index=True)
    player2_id = db.Column(db.Integer, db.ForeignKey('user.id', ondelete='SET NULL'), nullable=True, index=True)
    player1_wins = db.Column(db.Integer, default=0, nullable=False)
    player2_wins = db.Column(db.Integer, default=0, nullable=False)
    draws = db.Column(db.Integer, default=0, nullable=False)
    total_rounds = db.Column(db.Integer, default=0, nullable=False, index=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)
    session_type = db.Column(db.String(16), default='guest', nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    player1 = db.relationship('User', foreign_keys=[player1_id])
    player2 = db.relationship('User', foreign_keys=[player2_id])
    rounds = db.relationship(
        'GameRound',
        back_populates='session',
        cascade='all, delete-orphan',
        order_by='GameRound.id',
    )

    def __init__(self, **kwargs):
        super(GameSession, self).__init__(**kwargs)
        self.session_type = self.determine_session_type()

    def determine_session_type(self):
        if self.player1_id and self.player2_id:
            return 'authenticated'
        if not self.player1_id and not self.player2_id:
            return 'guest'
        return 'mixed'

    def to_dict(self, include_history=False):
        data = {
            'id': self.id,
            'player1_name': self.player1_name,
            'player2_name': self.player2_name,
            'player1_id': self.player1_id,
            'player2_id': self.player2_id,
            'player1_wins': self.player1_wins,
            'player2_wins': self.player2_wins,
            'draws': self.draws,
            'total_rounds': self.total_rounds,
            'is_active': self.is_active,
            'session_type': self.session_type,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_history:
            data['rounds'] = [r.to_dict() for r in self.rounds]
        return data


class GameRound(db.Model):
    __tablename__ = 'game_round'
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('game_session.id', ondelete='CASCADE'), nullable=False, index=True)
    winner = db.Column(db.String(16), nullable=False)  # player1, player2, draw
    board = db.Column(db.JSON, nullable=False)  # 9 cells, null for empty
    moves = db.Column(db.JSON, nullable=False)  # [{player, position, timestamp}]
    completed_at = db.Column(db.DateTime, default=datetime.utcnow)

    session = db.relationship('GameSession', back_populates='rounds')

    def to_dict(self):
        return {
            'id': self.id,
            'winner': self.winner,
            'board': self.board,
            'moves': self.moves,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
        }
