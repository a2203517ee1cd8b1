import logging
import random
import click
from flask import Flask, jsonify
from flask.cli import with_appcontext
from flask_cors import CORS
from .extensions import db, migrate
from .config import Config
from .booking import BookingEngine
from .entities import MAX_TABLE_NUMERAL, Table
from .errors import BookingError
from .gateway import SqlGateway
from .http import jerror
from .blueprints.reservations import bp as reservations_bp
from .blueprints.tables import bp as tables_bp
from .blueprints.clients import bp as clients_bp
from .models import ReservationRecord, ClientRecord

logger = logging.getLogger(__name__)

VIP_TABLES = (1, 2)


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)


def create_app(test_config=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    setup_logging(app.config["LOG_LEVEL"])
    CORS(app)

    db.init_app(app)
    migrate.init_app(app, db)

    app.extensions["tablebook"] = BookingEngine(SqlGateway(db))

    app.register_blueprint(reservations_bp, url_prefix="/api/reservations")
    app.register_blueprint(tables_bp, url_prefix="/api/tables")
    app.register_blueprint(clients_bp, url_prefix="/api/clients")

    @app.errorhandler(BookingError)
    def booking_error(e: BookingError):
        if e.status >= 500:
            logger.error("%s: %s", e.code, e.message)
        return jerror(e.status, e.code, e.message, e.details)

    @app.get("/health")
    def health():
        return jsonify(status="ok")

    @click.command("init-db")
    @with_appcontext
    def init_db_command():
        """Creates the tables for a fresh database."""
        db.create_all()
        print("Database initialized.")

    @click.command("seed")
    @with_appcontext
    def seed_command():
        """Resets reservations and clients and creates the dining tables."""
        db.session.query(ReservationRecord).delete()
        db.session.query(ClientRecord).delete()
        db.session.commit()
        print("Cleared existing data.")

        gateway = app.extensions["tablebook"].gateway
        total_tables = min(app.config["TABLE_COUNT"], MAX_TABLE_NUMERAL)
        for numeral in range(1, total_tables + 1):
            Table(
                numeral=numeral,
                capacity=random.randint(2, 10),
                exclusive_view=True if numeral in VIP_TABLES else None,
            ).save(gateway)
        print(f"Created {total_tables} tables.")
        print("Database seeded!")

    app.cli.add_command(init_db_command)
    app.cli.add_command(seed_command)

    return app
