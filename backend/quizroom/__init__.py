from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
allowed_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(flask_app.config.get('LOG_LEVEL', 'INFO'))

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    from quizroom.main import main
    flask_app.register_blueprint(main)

    from quizroom.api.rooms import rooms
    flask_app.register_blueprint(rooms, url_prefix='/api/rooms')

    from quizroom.api.quiz import quiz
    flask_app.register_blueprint(quiz, url_prefix='/api/rooms')

    from quizroom.errors import RoomError

    @flask_app.errorhandler(RoomError)
    def handle_room_error(exc):
        flask_app.logger.info(f"[room-reject] code={exc.code} status={exc.status_code} message={exc.message}")
        return jsonify(exc.to_dict()), exc.status_code

    from quizroom.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Authentication required', 'code': 'unauthenticated'}), 401

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from quizroom.models import Question
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            users = []
            for name in ['creator1', 'player1', 'player2']:
                user = User(username=name)
                user.set_password('password')
                db.session.add(user)
                users.append(user)
            db.session.flush()

            samples = [
                ('Red planet', 'Which planet is known as the Red Planet?', ['Earth', 'Mars', 'Jupiter', 'Venus'], 1, 'science'),
                ('Largest ocean', 'What is the largest ocean on Earth?', ['Atlantic', 'Indian', 'Arctic', 'Pacific'], 3, 'geography'),
                ('Oxygen', 'What is the chemical symbol for oxygen?', ['G', 'Ox', 'O', 'Om'], 2, 'science'),
            ]
            for title, content, options, correct, category in samples:
                db.session.add(Question(
                    creator_id=users[0].id,
                    title=title,
                    content=content,
                    options=options,
                    correct_answer=correct,
                    category=category,
                    difficulty='easy',
                    is_public=True,
                ))

            db.session.commit()
            print('Database has been reset and seeded!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
