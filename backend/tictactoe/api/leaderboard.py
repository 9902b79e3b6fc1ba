from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from tictactoe.services import stats
from tictactoe.validation import parse_leaderboard_query

leaderboard = Blueprint('leaderboard', __name__)


@leaderboard.route('', methods=['GET'])
def get_leaderboard():
    options = parse_leaderboard_query(request.args)
    return jsonify({'success': True, 'data': stats.get_leaderboard(**options)})


@leaderboard.route('/user/<int:user_id>/stats', methods=['GET'])
def get_user_stats(user_id):
    return jsonify({'success': True, 'data': stats.get_user_stats(user_id)})


@leaderboard.route('/user/<int:user_id>/rank', methods=['GET'])
def get_user_rank(user_id):
    return jsonify({'success': True, 'data': stats.get_user_rank(user_id)})


@leaderboard.route('/my/stats', methods=['GET'])
@login_required
def get_my_stats():
    return jsonify({'success': True, 'data': stats.get_user_stats(current_user.id)})


@leaderboard.route('/my/rank', methods=['GET'])
@login_required
def get_my_rank():
    return jsonify({'success': True, 'data': stats.get_user_rank(current_user.id)})
