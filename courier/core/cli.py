# courier/core/cli.py
"""
CLI for courier worker and check commands.

Module path resolution:
1. User provides dotted module path: `courier worker app.messaging:courier`
2. User is responsible for PYTHONPATH / running from correct directory
3. Convenience: if cwd has pyproject.toml, we add cwd to sys.path
"""

import argparse
import asyncio
import importlib
import logging
import os
import signal
import sys
from typing import Optional

from courier.core.app import Courier
from courier.core.errors import ConfigurationError, CourierError, ErrorCode
from courier.core.logging import get_logger, set_default_level
from courier.core.queues.postgres import PostgresQueue
from courier.core.utils.imports import import_file_path, setup_sys_path_from_cwd

logger = get_logger('cli')


def _parse_locator(locator: str) -> tuple[str, Optional[str]]:
    """
    Parse a module locator into (module_path, attribute_name).

    - "app.messaging:courier" -> ("app.messaging", "courier")
    - "app/messaging.py" -> ("app/messaging.py", None)
    """
    if ':' in locator:
        module_part, attr = locator.rsplit(':', 1)
        if not module_part or not attr:
            raise ConfigurationError(
                message=f"malformed locator: '{locator}'",
                code=ErrorCode.CLI_INVALID_LOCATOR,
                notes=['expected <module>:<variable>'],
                help_text='for example: courier worker app.messaging:courier',
            )
        return (module_part, attr)
    return (locator, None)


def _is_file_path(path: str) -> bool:
    return path.endswith('.py') or os.path.sep in path or '/' in path


def discover_app(module_locator: str) -> tuple[Courier, str]:
    """
    Import a module and find the Courier instance in it.

    Returns:
        (app_instance, variable_name)
    """
    project_root = setup_sys_path_from_cwd()
    if project_root:
        logger.info(f'Added project root to sys.path: {project_root}')

    module_path, attr_name = _parse_locator(module_locator)

    if _is_file_path(module_path):
        if not module_path.endswith('.py'):
            module_path += '.py'
        module = import_file_path(os.path.realpath(module_path))
    else:
        try:
            module = importlib.import_module(module_path)
        except ModuleNotFoundError as e:
            raise ConfigurationError(
                message=f'module not found: {module_path}',
                code=ErrorCode.CLI_INVALID_LOCATOR,
                notes=[str(e), f'sys.path: {sys.path[:5]}...'],
                help_text=(
                    'ensure you are running from the correct directory\n'
                    'or set PYTHONPATH to include your project root'
                ),
            ) from e

    if attr_name:
        obj = getattr(module, attr_name, None)
        if not isinstance(obj, Courier):
            raise ConfigurationError(
                message=f"'{attr_name}' in module '{module.__name__}' is not a Courier instance",
                code=ErrorCode.CLI_INVALID_LOCATOR,
                notes=[f'got {type(obj).__name__}'],
                help_text='point the locator at the variable holding Courier(...)',
            )
        app, var_name = obj, attr_name
    else:
        found = [
            (obj, name)
            for name, obj in vars(module).items()
            if not name.startswith('_') and isinstance(obj, Courier)
        ]
        if len(found) != 1:
            names = [name for _, name in found]
            raise ConfigurationError(
                message=(
                    f'no Courier instance found in {module.__name__}'
                    if not found
                    else f'multiple Courier instances found in {module.__name__}'
                ),
                code=ErrorCode.CLI_INVALID_LOCATOR,
                notes=[f'candidates: {names}'] if names else [],
                help_text='specify the variable name: module.path:variable',
            )
        app, var_name = found[0]

    logger.info(f"Discovered courier '{var_name}' from {module.__name__}")
    return app, var_name


def setup_logging(loglevel: str) -> None:
    """Configure logging level for every courier logger."""
    level = getattr(logging, loglevel.upper(), logging.INFO)
    set_default_level(level)

    for name in list(logging.Logger.manager.loggerDict):
        if isinstance(name, str) and (name == 'courier' or name.startswith('courier.')):
            lgr = logging.getLogger(name)
            lgr.setLevel(level)
            for handler in lgr.handlers:
                handler.setLevel(level)


def _prepare_app(args: argparse.Namespace) -> Courier:
    app, _ = discover_app(args.locator)
    if args.register:
        app.discover(args.register)
    handles = app.import_discovered_modules()
    logger.info(f'Registered {len(handles)} types from discovered modules')
    return app


def worker_command(args: argparse.Namespace) -> None:
    """Handle worker command."""
    setup_logging(args.loglevel)
    logger.info(f'Starting courier worker with loglevel={args.loglevel}')

    try:
        app = _prepare_app(args)
    except CourierError as e:
        logger.error(str(e))
        sys.exit(1)
    except Exception as e:
        logger.error(f'Failed to load app: {type(e).__name__}: {e}')
        sys.exit(1)

    app.config.log_config(logger)
    if not app.types:
        logger.warning('No dispatchable types registered; every message will be left unhandled')

    async def run_worker() -> None:
        consumer = app.consumer()
        loop = asyncio.get_running_loop()

        def signal_handler() -> None:
            logger.info('Received interrupt signal, stopping consumer...')
            consumer.request_stop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, signal_handler)
            except NotImplementedError:
                # Windows event loops have no signal handler support
                pass

        try:
            await consumer.run()
        finally:
            await app.close()

    try:
        asyncio.run(run_worker())
    except Exception as e:
        logger.error(f'Worker failed: {type(e).__name__}: {e}', exc_info=True)
        sys.exit(1)


def check_command(args: argparse.Namespace) -> None:
    """Load the app, list what it can dispatch, optionally check the queue."""
    setup_logging(args.loglevel)

    try:
        app = _prepare_app(args)
    except CourierError as e:
        print(e.format_rust_style(), file=sys.stderr)
        sys.exit(1)

    for handle in sorted(app.types.values(), key=lambda h: h.type_name):
        print(handle.type_name)
        for name, method in sorted(handle.methods.items()):
            kind = 'static' if method.is_static else 'instance'
            print(f'  {name}({method.parameter_name}) [{kind}]')
    print(f'{len(app.types)} types registered')

    if args.live:
        queue = app.get_queue()
        if not isinstance(queue, PostgresQueue):
            print('live check skipped: no postgres queue configured')
            return
        try:
            asyncio.run(_live_check(queue))
        except Exception as e:
            print(f'queue check failed: {type(e).__name__}: {e}', file=sys.stderr)
            sys.exit(1)
        print('queue reachable')


async def _live_check(queue: PostgresQueue) -> None:
    try:
        await queue.ensure_schema_initialized()
    finally:
        await queue.close()


def _add_common_arguments(parser: argparse.ArgumentParser, default_level: str) -> None:
    parser.add_argument(
        'locator',
        help='Courier instance locator (e.g., app.messaging:courier or app/messaging.py)',
    )
    parser.add_argument(
        '-r',
        '--register',
        action='append',
        default=[],
        metavar='MODULE',
        help='Extra module whose types are registered (repeatable)',
    )
    parser.add_argument(
        '--loglevel',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        default=default_level,
        type=str.upper,
        help=f'Logging level (default: {default_level})',
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='courier', description='courier CLI')
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    worker_parser = subparsers.add_parser('worker', help='Consume and dispatch envelopes')
    _add_common_arguments(worker_parser, 'INFO')

    check_parser = subparsers.add_parser(
        'check', help='List dispatchable types without consuming'
    )
    _add_common_arguments(check_parser, 'WARNING')
    check_parser.add_argument(
        '--live',
        action='store_true',
        default=False,
        help='Also connect to the postgres queue and create its table',
    )
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
        match args.command:
            case 'worker':
                worker_command(args)
            case 'check':
                check_command(args)
            case _:
                parser.print_help()
                error = ConfigurationError(
                    message='no command given',
                    code=ErrorCode.CLI_INVALID_ARGS,
                    notes=['available commands: worker, check'],
                    help_text='run `courier worker <module:app>` or `courier check <module:app>`',
                )
                print(error.format_rust_style(), file=sys.stderr)
                sys.exit(1)
    except KeyboardInterrupt:
        print('\nInterrupted by user')
        sys.exit(0)


if __name__ == '__main__':
    main()
