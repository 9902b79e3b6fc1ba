import logging
from datetime import datetime
from typing import Iterable, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from tictactoe import db
from tictactoe.models import GameRound, GameSession, User

logger = logging.getLogger(__name__)


class SessionReconciler:
    """Keeps the persisted GameSession in step with a live room.

    Storage failures never propagate: they are rolled back, logged, and
    reported through the return value so the room keeps running.
    """

    def ensure_created(self, room) -> Optional[int]:
        """Create the session once the room holds exactly two players."""
        if len(room.players) != 2:
            return room.session_id
        roster = tuple(p.name for p in room.players)
        if room.session_id is not None:
            if set(roster) == set(room.session_roster or ()):
                return room.session_id
            # A different opponent took the open seat
            logger.info(f"[session-relink] room={room.code} old_session={room.session_id}")
            self.cleanup_if_empty(room.session_id)
            room.session_id = None
            room.session_roster = None

        first, second = room.players
        try:
            session = GameSession(
                player1_name=first.name,
                player2_name=second.name,
                player1_id=first.account_id,
                player2_id=second.account_id,
            )
            db.session.add(session)
            db.session.commit()
            # Reloads the expired row, so a concurrent delete surfaces here
            session_id, session_type = session.id, session.session_type
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error(f"[session-create-failed] room={room.code} error={exc}")
            return None
        room.session_id = session_id
        room.session_roster = roster
        logger.info(f"[session-created] room={room.code} session={session_id} type={session_type}")
        return session_id

    def record_round(self, room, winner_symbol: Optional[str], board: Sequence, moves: Iterable[dict]) -> bool:
        """Append a completed round and bump session and account counters."""
        if room.session_id is None:
            logger.info(f"[round-unrecorded] room={room.code} reason=no_session")
            return False
        session_id = room.session_id
        try:
            session = db.session.get(GameSession, session_id)
            if session is None:
                logger.warning(f"[round-dangling] room={room.code} session={session_id} reason=session_missing")
                return False

            side = self._winner_side(room, session, winner_symbol)
            if side is None:
                return False

            counters = {
                GameSession.total_rounds: GameSession.total_rounds + 1,
                GameSession.updated_at: datetime.utcnow(),
            }
            if side == 'player1':
                counters[GameSession.player1_wins] = GameSession.player1_wins + 1
            elif side == 'player2':
                counters[GameSession.player2_wins] = GameSession.player2_wins + 1
            else:
                counters[GameSession.draws] = GameSession.draws + 1

            updated = GameSession.query.filter_by(id=session_id).update(counters, synchronize_session=False)
            if not updated:
                db.session.rollback()
                logger.warning(f"[round-dangling] room={room.code} session={session_id} reason=session_deleted")
                return False
            db.session.add(GameRound(
                session_id=session_id,
                winner=side,
                board=list(board),
                moves=[dict(m) for m in moves],
            ))
            player_ids = (session.player1_id, session.player2_id)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error(f"[round-record-failed] room={room.code} session={session_id} error={exc}")
            return False

        logger.info(f"[round-recorded] room={room.code} session={session_id} winner={side}")
        self._update_accounts(player_ids, side)
        return True

    def _winner_side(self, room, session, winner_symbol: Optional[str]) -> Optional[str]:
        if winner_symbol is None:
            return 'draw'
        winner = room.player_by_symbol(winner_symbol)
        if winner is None:
            logger.error(f"[round-unrecorded] room={room.code} reason=winner_missing symbol={winner_symbol}")
            return None
        # Symbols swap between rounds, names do not
        if winner.name == session.player1_name:
            return 'player1'
        if winner.name == session.player2_name:
            return 'player2'
        logger.error(f"[round-unrecorded] room={room.code} reason=winner_not_in_session name={winner.name}")
        return None

    def _update_accounts(self, player_ids, side: str) -> None:
        for index, user_id in enumerate(player_ids):
            if not user_id:
                continue
            own_side = 'player1' if index == 0 else 'player2'
            counters = {User.total_games: User.total_games + 1}
            if side == 'draw':
                counters[User.draws] = User.draws + 1
            elif side == own_side:
                counters[User.wins] = User.wins + 1
            else:
                counters[User.losses] = User.losses + 1
            # One transaction per account so a failure cannot block the other
            try:
                User.query.filter_by(id=user_id).update(counters, synchronize_session=False)
                db.session.commit()
            except SQLAlchemyError as exc:
                db.session.rollback()
                logger.error(f"[account-stats-failed] user={user_id} error={exc}")

    def snapshot(self, session_id: Optional[int]) -> Optional[dict]:
        if session_id is None:
            return None
        try:
            session = db.session.get(GameSession, session_id)
            return session.to_dict() if session else None
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error(f"[session-fetch-failed] session={session_id} error={exc}")
            return None

    def cleanup_if_empty(self, session_id: Optional[int]) -> bool:
        """Delete the session if no round was ever completed in it."""
        if session_id is None:
            return False
        try:
            deleted = GameSession.query.filter(
                GameSession.id == session_id,
                GameSession.total_rounds == 0,
            ).delete(synchronize_session=False)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error(f"[session-cleanup-failed] session={session_id} error={exc}")
            return False
        if deleted:
            logger.info(f"[session-deleted] session={session_id} reason=no_rounds")
        return bool(deleted)

    def purge_empty_sessions(self, keep: Iterable[int] = (), created_before: Optional[datetime] = None) -> int:
        """Delete zero-round sessions except the ones still linked to live rooms.

        ``created_before`` (naive UTC, like the column) spares sessions newer
        than the cutoff, so a room that is still linking its session cannot
        lose it to a sweep that read the live set a moment too early.
        """
        keep = [k for k in keep if k is not None]
        query = GameSession.query.filter(GameSession.total_rounds == 0)
        if keep:
            query = query.filter(GameSession.id.notin_(keep))
        if created_before is not None:
            query = query.filter(GameSession.created_at < created_before)
        try:
            deleted = query.delete(synchronize_session=False)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error(f"[session-purge-failed] error={exc}")
            return 0
        if deleted:
            logger.info(f"[session-purge] deleted={deleted}")
        return deleted
