"""Application startup script and CLI interface."""

import sys
import json
import argparse

from .config import (
    AppConfig,
    LogLevel,
    load_config,
    get_development_config,
    get_production_config,
    get_testing_config,
    validate_config
)
from .core.exceptions import WorkflowEngineError
from .core.logging import get_logger, setup_logging


def create_argument_parser() -> argparse.ArgumentParser:
    """Create command line argument parser."""
    parser = argparse.ArgumentParser(
        prog="automation-engine",
        description="Workflow Automation Engine - runs editor-built automation workflows"
    )

    # Server configuration
    parser.add_argument(
        "--host",
        help="Host to bind the server to (default: 0.0.0.0)"
    )

    parser.add_argument(
        "--port",
        type=int,
        help="Port to bind the server to (default: 8000)"
    )

    parser.add_argument(
        "--reload",
        action="store_true",
        help="Enable auto-reload for development"
    )

    # Environment configuration
    parser.add_argument(
        "--env",
        choices=["development", "production", "testing"],
        help="Environment configuration preset"
    )

    parser.add_argument(
        "--config",
        help="Path to a .env configuration file"
    )

    parser.add_argument(
        "--database-url",
        help="Database connection URL"
    )

    # Logging configuration
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level"
    )

    parser.add_argument(
        "--log-file",
        help="Path to log file"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode"
    )

    parser.add_argument(
        "--max-concurrent-executions",
        type=int,
        help="Worker threads for background executions"
    )

    # Commands
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run the API server")
    run_parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Number of worker processes (default: 1)"
    )

    db_parser = subparsers.add_parser("db", help="Database management commands")
    db_subparsers = db_parser.add_subparsers(dest="db_command", help="Database commands")
    db_subparsers.add_parser("init", help="Initialize database tables")
    db_subparsers.add_parser("migrate", help="Run database migrations")
    db_subparsers.add_parser("reset", help="Reset database (drop and recreate tables)")

    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="config_command", help="Config commands")
    config_subparsers.add_parser("show", help="Show current configuration")
    config_subparsers.add_parser("validate", help="Validate configuration")

    execute_parser = subparsers.add_parser("execute", help="Fire a workflow trigger and wait for the result")
    execute_parser.add_argument("workflow_id", help="ID of the workflow to execute")
    execute_parser.add_argument(
        "--trigger-type",
        default="manual",
        help="Trigger type recorded on the execution (default: manual)"
    )
    execute_parser.add_argument(
        "--data",
        help="Trigger payload as a JSON document"
    )

    return parser


def load_configuration(args: argparse.Namespace) -> AppConfig:
    """Load configuration based on command line arguments."""
    if args.env == "development":
        config = get_development_config()
    elif args.env == "production":
        config = get_production_config()
    elif args.env == "testing":
        config = get_testing_config()
    else:
        config = load_config(args.config)

    # Command line arguments override everything else
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.reload:
        config.reload = args.reload
    if args.database_url:
        config.database_url = args.database_url
    if args.log_level:
        config.log_level = LogLevel(args.log_level)
    if args.log_file:
        config.log_file = args.log_file
    if args.debug:
        config.debug = args.debug
    if args.max_concurrent_executions:
        config.max_concurrent_executions = args.max_concurrent_executions

    return config


def run_server(config: AppConfig, workers: int = 1):
    """Run the API server."""
    import uvicorn
    from .factory import create_app

    logger = get_logger(__name__)
    logger.info(f"Starting server with {workers} worker(s)")

    uvicorn_config = config.get_uvicorn_config()

    if workers > 1:
        uvicorn.run(
            "automation_engine.main:app",
            workers=workers,
            **uvicorn_config
        )
    else:
        app = create_app(config)
        uvicorn.run(app, **uvicorn_config)


def run_database_command(command: str, config: AppConfig):
    """Run database management commands."""
    from .storage.database import create_tables, drop_tables, init_database
    from .storage.migrations import run_migrations

    logger = get_logger(__name__)
    init_database(config.database_url, echo=config.database_echo)

    if command == "init":
        logger.info("Initializing database tables...")
        create_tables()
        logger.info("Database tables created successfully")

    elif command == "migrate":
        logger.info("Running database migrations...")
        run_migrations()
        logger.info("Database migrations completed successfully")

    elif command == "reset":
        logger.info("Resetting database...")
        drop_tables()
        create_tables()
        run_migrations()
        logger.info("Database reset completed successfully")


def execute_workflow_command(config: AppConfig, workflow_id: str, trigger_type: str, data: str = None) -> int:
    """Run one workflow synchronously and print the execution record.

    Returns:
        Process exit code: 0 when the execution completed, 1 otherwise
    """
    from .factory import initialize_core_components
    from .storage.database import create_tables, init_database

    logger = get_logger(__name__)

    try:
        trigger_data = json.loads(data) if data else None
    except json.JSONDecodeError as e:
        print(f"Invalid --data JSON: {e}")
        return 1

    init_database(config.database_url, echo=config.database_echo)
    create_tables()
    _, _, _, lifecycle = initialize_core_components(config, logger)

    try:
        execution = lifecycle.start(workflow_id, trigger_type, trigger_data)
    except WorkflowEngineError as e:
        print(json.dumps(e.to_dict(), indent=2, default=str))
        return 1
    finally:
        lifecycle.shutdown(wait=False)

    print(execution.model_dump_json(indent=2))
    return 0 if execution.status.value == "completed" else 1


def show_configuration(config: AppConfig):
    """Show current configuration."""
    print("Current Configuration:")
    print(f"  App Name: {config.app_name}")
    print(f"  Version: {config.app_version}")
    print(f"  Debug: {config.debug}")
    print(f"  Host: {config.host}")
    print(f"  Port: {config.port}")
    print(f"  Database URL: {config.database_url}")
    print(f"  Log Level: {config.log_level.value}")
    print(f"  Max Concurrent Executions: {config.max_concurrent_executions}")
    print(f"  Execution Timeout: {config.execution_timeout}s")
    print(f"  Max Traversal Depth: {config.max_traversal_depth}")
    print(f"  Max Node Executions: {config.max_node_executions}")
    print(f"  Replay Reconverging Nodes: {config.replay_reconverging_nodes}")


def validate_configuration_command(config: AppConfig):
    """Validate configuration and show results."""
    try:
        validate_config(config)
        print("Configuration validation: PASSED")
        print("All configuration settings are valid.")
    except ValueError as e:
        print("Configuration validation: FAILED")
        print(f"Error: {e}")
        sys.exit(1)


def main():
    """Main entry point for the application."""
    parser = create_argument_parser()
    args = parser.parse_args()

    try:
        config = load_configuration(args)

        if args.command == "config":
            if args.config_command == "show":
                show_configuration(config)
            elif args.config_command == "validate":
                validate_configuration_command(config)
            else:
                print("Configuration command required. Use --help for options.")
                sys.exit(1)
            return

        validate_config(config)
        setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.structured_logging,
        )

        if args.command == "run" or args.command is None:
            workers = getattr(args, 'workers', 1)
            run_server(config, workers)

        elif args.command == "db":
            if args.db_command:
                run_database_command(args.db_command, config)
            else:
                print("Database command required. Use --help for options.")
                sys.exit(1)

        elif args.command == "execute":
            sys.exit(execute_workflow_command(config, args.workflow_id, args.trigger_type, args.data))

        else:
            parser.print_help()

    except (ValueError, WorkflowEngineError) as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
