from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
socketio = SocketIO(async_mode=None)

def create_app(config_class=Config, clock=None):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from turnrelay.main import main
    flask_app.register_blueprint(main)

    from turnrelay.api.seasons import seasons
    flask_app.register_blueprint(seasons, url_prefix='/api/seasons')

    from turnrelay.api.turns import turns
    flask_app.register_blueprint(turns, url_prefix='/api')

    from turnrelay.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    # One long-lived engine per application, reachable through get_engine()
    from turnrelay.services.engine import Engine
    Engine(clock=clock).init_app(flask_app)

    @click.command('db-reset')
    def db_reset_command():
        """Drops and recreates all tables."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            print('Database has been reset!')

    @click.command('jobs-recover')
    def jobs_recover_command():
        """Fires persisted timeout jobs that are already overdue.

        Upcoming jobs are armed by the serving process at startup, not here.
        """
        from turnrelay.services.engine import get_engine
        with flask_app.app_context():
            fired = get_engine(flask_app).scheduler.fire_overdue()
            print(f"Fired overdue jobs: {fired}")

    @click.command('jobs-list')
    def jobs_list_command():
        """Lists persisted timeout jobs."""
        from turnrelay.models import ScheduledJob
        with flask_app.app_context():
            for job in ScheduledJob.query.order_by(ScheduledJob.run_at).all():
                print(f"{job.id}\t{job.phase}\t{job.run_at.isoformat()}")

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(jobs_recover_command)
    flask_app.cli.add_command(jobs_list_command)

    return flask_app
