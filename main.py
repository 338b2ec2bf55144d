# main.py
import argparse
import logging
import sys
import threading


def setup_logging(level: str = 'INFO', to_file: bool = True):
    """Configures logging before anything else runs, with file rotation"""
    from core.config_manager import get_app_data_dir
    from logging.handlers import RotatingFileHandler

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    handlers = [console_handler]

    if to_file:
        logs_dir = get_app_data_dir() / "logs"
        logs_dir.mkdir(exist_ok=True)

        # 5MB per file, 5 backups
        file_handler = RotatingFileHandler(
            logs_dir / "sub_recoded_proxy.log",
            maxBytes=5 * 1024 * 1024,
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=handlers,
        force=True
    )


logger = logging.getLogger(__name__)


def setup_exception_handler():
    """Logs uncaught exceptions as critical"""

    def exception_handler(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return

        logger.critical("Unhandled exception:",
                        exc_info=(exc_type, exc_value, exc_traceback))

    sys.excepthook = exception_handler


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="HTML-rewriting forward proxy: /proxy?u=<encodedUrl>"
    )
    parser.add_argument('--host', help="listen address (default from config, 0.0.0.0)")
    parser.add_argument('--port', type=int, help="listen port (default from config or PORT, 7777)")
    parser.add_argument('--config', help="path to a JSON config file")
    parser.add_argument('--log-level', help="DEBUG, INFO, WARNING or ERROR")
    return parser.parse_args(argv)


def main(argv=None):
    """Entry point"""
    args = parse_args(argv)

    from core.config_manager import get_config
    config = get_config(args.config)

    if args.host:
        config.set('server.host', args.host)
    if args.port:
        config.set('server.port', args.port)
    if args.log_level:
        config.set('logging.level', args.log_level.upper())

    setup_logging(config.get('logging.level', 'INFO'), config.get('logging.to_file', True))
    setup_exception_handler()

    from core.proxy_manager import ProxyManager
    manager = ProxyManager(config)

    logger.info("🚀 Starting SUB Recoded proxy")
    if not manager.start():
        logger.error(f"❌ Proxy failed to start: {manager.last_error or 'unknown error'}")
        return 1

    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        manager.stop()

    return 0


if __name__ == "__main__":
    sys.exit(main())
