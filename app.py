import os
import logging
import argparse
import traceback
from flask import Flask, jsonify
from flask_migrate import Migrate
from werkzeug.exceptions import HTTPException

# Import db from models
from models import db
# Import database migration function
from db_migrations import check_and_update_database

# Standard 4.0 scale: (letter, points, min %, max %, remarks)
DEFAULT_GRADE_SCALE = [
    ('A+', '4.00', '80.00', '100.00', 'Outstanding'),
    ('A', '3.75', '75.00', '79.99', 'Excellent'),
    ('A-', '3.50', '70.00', '74.99', 'Very Good'),
    ('B+', '3.25', '65.00', '69.99', 'Good'),
    ('B', '3.00', '60.00', '64.99', 'Satisfactory'),
    ('B-', '2.75', '55.00', '59.99', 'Above Average'),
    ('C+', '2.50', '50.00', '54.99', 'Average'),
    ('C', '2.25', '45.00', '49.99', 'Below Average'),
    ('D', '2.00', '40.00', '44.99', 'Pass'),
    ('F', '0.00', '0.00', '39.99', 'Fail'),
]

# Configure logging level from environment variable
def configure_logging():
    """Configure logging based on environment settings"""
    log_level = os.environ.get('LOG_LEVEL', 'WARNING').upper()

    # Map string levels to logging constants
    level_mapping = {
        'DEBUG': logging.DEBUG,
        'INFO': logging.INFO,
        'WARNING': logging.WARNING,
        'ERROR': logging.ERROR,
        'CRITICAL': logging.CRITICAL
    }

    actual_level = level_mapping.get(log_level, logging.WARNING)

    # Setup logging
    logging.basicConfig(
        filename=os.environ.get('LOG_FILE', 'app.log'),
        level=actual_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    return actual_level

def create_app(config_overrides=None):
    app = Flask(__name__)

    # Get the absolute path to the current directory
    base_dir = os.path.abspath(os.path.dirname(__file__))
    default_db_uri = f'sqlite:///{os.path.join(base_dir, "instance", "obe_data.db")}'

    # Configuration
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev_key_for_local_use')
    app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', default_db_uri)
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['GRADE_BATCH_WORKERS'] = int(os.environ.get('GRADE_BATCH_WORKERS', '1'))
    if config_overrides:
        app.config.update(config_overrides)

    # Ensure the instance folder exists for the default SQLite database
    if app.config['SQLALCHEMY_DATABASE_URI'] == default_db_uri:
        os.makedirs(os.path.join(base_dir, 'instance'), exist_ok=True)

    # Configure logging
    log_level = configure_logging()

    # Log the current configuration
    if log_level <= logging.INFO:
        logging.info(f"Application started with log level: {logging.getLevelName(log_level)}")

    # Initialize extensions with app
    db.init_app(app)
    Migrate(app, db)

    # Register blueprints
    from routes.attainment_routes import attainment_bp
    from routes.grade_routes import grade_bp
    from routes.api_routes import api_bp

    app.register_blueprint(attainment_bp)
    app.register_blueprint(grade_bp)
    app.register_blueprint(api_bp)

    # Create tables if they don't exist
    with app.app_context():
        db.create_all()
        # Run database migrations to update schema for existing installations
        check_and_update_database(app)
        # Seed the default grade scale if none exists
        initialize_default_grade_scale()

    @app.route('/health')
    def health():
        return jsonify({'success': True, 'status': 'ok'})

    @app.errorhandler(Exception)
    def handle_uncaught_exception(e):
        if isinstance(e, HTTPException):
            return jsonify({'success': False, 'message': e.description}), e.code

        # Get detailed error information
        error_traceback = traceback.format_exc()
        error_message = str(e)

        # Log the error
        logging.error(f"Uncaught exception: {error_message}\n{error_traceback}")
        db.session.rollback()

        return jsonify({'success': False, 'message': error_message}), 500

    return app

def initialize_default_grade_scale():
    """Initialize the default grade scale if no scale exists"""
    from decimal import Decimal
    from models import GradeScale, GradePoint, Log

    if GradeScale.query.count() > 0:
        return

    scale = GradeScale(name='Standard 4.0 Scale', is_active=True)
    for letter, points, min_pct, max_pct, remarks in DEFAULT_GRADE_SCALE:
        scale.grade_points.append(GradePoint(
            letter_grade=letter,
            grade_points=Decimal(points),
            min_percentage=Decimal(min_pct),
            max_percentage=Decimal(max_pct),
            remarks=remarks
        ))
    db.session.add(scale)
    db.session.add(Log(action="SEED_GRADE_SCALE", description="Initialized default 4.0 grade scale"))
    db.session.commit()
    logging.info("Initialized default grade scale")

if __name__ == '__main__':
    # Parse command line arguments
    parser = argparse.ArgumentParser(description='OBE Attainment Engine')
    parser.add_argument('port', nargs='?', type=int, default=5000, help='Port to run the application on')
    parser.add_argument('--host', default='127.0.0.1', help='Interface to bind to')
    args = parser.parse_args()

    app = create_app()

    print("=" * 70)
    print(f"Server started! API available at: http://localhost:{args.port}")
    print("=" * 70)

    # Run the application
    app.run(debug=True, port=args.port, host=args.host)
