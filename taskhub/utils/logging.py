
"""
Logging utility module for consistent logging across the task management services.
This module provides centralized logging configuration, log formatting, and helper
functions used by the services, repositories and the database manager.

The utility is designed to be:
- Configurable: Adjustable log levels, formats, and output destinations
- Context-aware: Includes timestamps, module names, and execution context
- Observable: Supports both console and file logging
"""

import logging
import re
import sys
import time
import traceback
from functools import wraps
from pathlib import Path
from typing import Dict, Any

def setup_logging(config: Dict[str, Any] = None):
    """
    Set up logging configuration for the application.

    Args:
        config: Configuration dictionary with logging settings
    """
    config = config or {}

    # Get log level from config or environment
    log_level_str = str(config.get('log_level', 'INFO')).upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    log_format = config.get('log_format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    log_file = config.get('log_file')
    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(log_format)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear existing handlers
    root_logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
            logging.info(f"Logging to file: {log_file}")
        except OSError as e:
            logging.warning(f"Failed to set up file logging: {e}")

    # Package loggers inherit the root handlers; only their level is pinned
    for logger_name in ('taskhub', 'taskhub.services', 'taskhub.repositories', 'taskhub.utils', 'taskhub.models'):
        logging.getLogger(logger_name).setLevel(log_level)

    logging.info("Logging setup complete")
    logging.info(f"Log level: {log_level_str}")

def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger for a specific module or component.

    Args:
        name: Name of the logger (typically __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)

def log_function_call(func):
    """
    Decorator to log function calls with timing and arguments.

    Usage:
        @log_function_call
        def clone_subtree(self, source_task_id, ...):
            ...

    Args:
        func: Function to decorate

    Returns:
        Wrapped function with logging
    """
    logger = get_logger(func.__module__)

    @wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.time()
        func_name = func.__name__

        try:
            sanitized_args = _sanitize_log_args(args, kwargs)
            logger.debug(f"Calling {func_name} with args: {sanitized_args}")

            result = func(*args, **kwargs)

            execution_time = time.time() - start_time
            logger.debug(f"Function {func_name} completed successfully in {execution_time:.3f}s")

            return result

        except Exception as e:
            execution_time = time.time() - start_time
            logger.debug(f"Function {func_name} failed after {execution_time:.3f}s: {str(e)}")
            logger.debug(traceback.format_exc())
            raise

    return wrapper

def _sanitize_log_args(args, kwargs) -> Dict[str, Any]:
    """
    Sanitize arguments for logging to avoid sensitive data exposure.

    Args:
        args: Function positional arguments
        kwargs: Function keyword arguments

    Returns:
        Sanitized dictionary of arguments
    """
    sanitized = {
        'args': [],
        'kwargs': {}
    }

    for arg in args:
        if isinstance(arg, (str, int, float, bool, type(None))):
            sanitized['args'].append(arg)
        else:
            sanitized['args'].append(f"<{type(arg).__name__}>")

    sensitive_keywords = ['password', 'token', 'secret', 'credential']

    for key, value in kwargs.items():
        if any(sensitive in key.lower() for sensitive in sensitive_keywords):
            sanitized['kwargs'][key] = "****"
        elif isinstance(value, (str, int, float, bool, type(None))):
            sanitized['kwargs'][key] = value
        else:
            sanitized['kwargs'][key] = f"<{type(value).__name__}>"

    return sanitized

def log_database_operation(operation: str, query: str, params: Any = None, duration: float = None):
    """
    Log database operations with timing and query information.

    Args:
        operation: Type of operation (SELECT, INSERT, UPDATE, DELETE)
        query: SQL query (sanitized)
        params: Query parameters (never logged)
        duration: Execution duration in seconds
    """
    logger = get_logger('taskhub.utils.database')
    if not logger.isEnabledFor(logging.DEBUG):
        return

    sanitized_query = _sanitize_sql_query(query)

    if duration is not None:
        logger.debug(f"Database {operation}: {sanitized_query} | Duration: {duration:.3f}s")
    else:
        logger.debug(f"Database {operation}: {sanitized_query}")

def _sanitize_sql_query(query: str) -> str:
    """
    Sanitize SQL query for logging by collapsing whitespace and limiting length.

    Args:
        query: SQL query string

    Returns:
        Sanitized query string
    """
    query = ' '.join(query.split())
    if 'INSERT' in query or 'UPDATE' in query:
        query = re.sub(r'VALUES\s*\(.*?\)', 'VALUES (<values>)', query, flags=re.IGNORECASE | re.DOTALL)

    max_length = 200
    if len(query) > max_length:
        return query[:max_length] + "..."

    return query

def log_validation_result(entity_type: str, entity_id: Any, is_valid: bool, issues: list = None):
    """
    Log validation results for data quality monitoring.

    Args:
        entity_type: Type of entity being validated (task, section, check name, etc.)
        entity_id: Entity identifier
        is_valid: Validation result
        issues: List of validation issues if any
    """
    logger = get_logger('taskhub.utils.validation')

    if is_valid:
        logger.debug(f"Validation passed for {entity_type} {entity_id}")
    else:
        logger.warning(f"Validation failed for {entity_type} {entity_id}")
        if issues:
            for issue in issues:
                logger.warning(f"  - {issue}")
