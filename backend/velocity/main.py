from flask import Blueprint, jsonify, current_app

from velocity.models import Difficulty
from velocity.services.race.content import provider_from_config

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the Velocity Type race server!'})

@main.route('/api/content/<string:difficulty>')
def get_content(difficulty):
    try:
        tier = Difficulty.parse(difficulty)
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 400
    sentences = provider_from_config(current_app.config).fetch_sentences(tier)
    return jsonify({'difficulty': tier.value, 'sentences': sentences})
