# taskhub/main.py

"""
Main entry point for the taskhub task and project manager.
This script loads configuration, prepares the database schema, seeds the default
accounts and runs the integrity validation, leaving a database ready for the
services to operate on.
"""

import logging
import os
import time
from typing import Dict, Any

from dotenv import load_dotenv

from taskhub.services.dashboard_service import DashboardService
from taskhub.services.project_service import ProjectService
from taskhub.services.task_service import TaskService
from taskhub.services.template_service import TemplateService
from taskhub.services.user_service import UserService
from taskhub.utils.database import DatabaseManager
from taskhub.utils.logging import setup_logging
from taskhub.utils.validation import DataValidator

def _optional_int(name: str) -> Any:
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return None
    return int(value)

def load_configuration() -> Dict[str, Any]:
    """
    Load and validate configuration from environment variables.

    Returns:
        Dict[str, Any]: Configuration dictionary with validated values

    Raises:
        ValueError: If a numeric setting is malformed or out of range
    """
    load_dotenv()

    config = {
        # Database configuration
        'database_path': os.getenv('DATABASE_PATH', 'output/taskhub.sqlite'),
        'schema_file': os.getenv('SCHEMA_FILE', 'schema.sql'),
        'connection_timeout': int(os.getenv('DB_CONNECTION_TIMEOUT', '30')),
        'retry_attempts': int(os.getenv('DB_RETRY_ATTEMPTS', '3')),

        # Logging
        'log_level': os.getenv('LOG_LEVEL', 'INFO'),
        'log_file': os.getenv('LOG_FILE') or None,

        # Tree operations
        'max_clone_depth': _optional_int('MAX_CLONE_DEPTH'),

        # Dashboard
        'activity_window_days': int(os.getenv('ACTIVITY_WINDOW_DAYS', '30')),

        # Quality control
        'validation_enabled': os.getenv('VALIDATION_ENABLED', 'true').lower() == 'true',
    }

    if config['max_clone_depth'] is not None and config['max_clone_depth'] < 1:
        raise ValueError("MAX_CLONE_DEPTH must be at least 1 when set")

    if config['retry_attempts'] < 1:
        raise ValueError("DB_RETRY_ATTEMPTS must be at least 1")

    if config['activity_window_days'] < 1:
        raise ValueError("ACTIVITY_WINDOW_DAYS must be at least 1")

    return config

def create_services(config: Dict[str, Any], db_manager: DatabaseManager = None) -> Dict[str, Any]:
    """
    Wire every service to one database manager.

    Args:
        config: Configuration dictionary
        db_manager: Existing manager to reuse (a new one is created otherwise)

    Returns:
        Mapping of service name to service instance
    """
    db_manager = db_manager or DatabaseManager(config['database_path'], config)
    return {
        'db': db_manager,
        'users': UserService(db_manager, config),
        'templates': TemplateService(db_manager, config),
        'tasks': TaskService(db_manager, config),
        'projects': ProjectService(db_manager, config),
        'dashboard': DashboardService(db_manager, config),
    }

def bootstrap(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Prepare the database and return the wired services.

    Args:
        config: Configuration dictionary

    Returns:
        Services as returned by ``create_services``
    """
    start_time = time.time()
    logging.info("Starting taskhub bootstrap...")

    db_manager = DatabaseManager(config['database_path'], config)
    db_manager.initialize_database(config.get('schema_file', 'schema.sql'))

    services = create_services(config, db_manager)
    services['users'].seed_defaults()

    if config.get('validation_enabled', True):
        logging.info("Running database validation...")
        validator = DataValidator(config)
        with db_manager.connection() as conn:
            validation_results = validator.validate_database_integrity(conn)
        for category, result in validation_results.items():
            if isinstance(result, dict):
                logging.info(f"{category}: {result['status']} - {result['message']}")
            else:
                logging.info(f"{category}: {result}")
        if validation_results['overall_status'] != 'success':
            logging.warning("\n" + validator.generate_validation_report(validation_results))

    elapsed_time = time.time() - start_time
    logging.info(f"Bootstrap completed in {elapsed_time:.2f} seconds")
    logging.info(f"Database ready at: {config['database_path']}")
    return services

def main() -> None:
    """
    Main entry point for the application.
    """
    try:
        config = load_configuration()
        setup_logging(config)
        bootstrap(config)

    except Exception as e:
        logging.critical(f"Application failed: {str(e)}", exc_info=True)
        raise SystemExit(1)

if __name__ == "__main__":
    main()
