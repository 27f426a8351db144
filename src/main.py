# src/main.py
import asyncio
import logging
import sys

import config_manager
from config_manager import ConfigError
from models import ProxyConfig
from proxy_cache import ProxyCache
from proxy_server import ProxyServer

logger = logging.getLogger(__name__)

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}
COMMANDS = ("console", "serve")


async def run(command: str, config: ProxyConfig, cache: ProxyCache) -> None:
    proxy = ProxyServer(config, cache)

    admin = None
    admin_task = None
    if config.admin_port:
        from admin_server import create_admin_app, build_admin_server
        admin = build_admin_server(create_admin_app(cache, proxy), config.ip_proxy,
                                   config.admin_port, config.log_level)
        admin_task = asyncio.create_task(admin.serve())

    try:
        if command == "serve":
            await proxy.start()
        else:
            from console import ProxyConsole
            await ProxyConsole(proxy, cache).run()
    finally:
        proxy.stop()
        if admin is not None:
            admin.should_exit = True
            await asyncio.wait([admin_task])


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    command = argv[0] if argv else "console"
    if command not in COMMANDS:
        print(f"Unknown command: {command}")
        print(f"Available commands: {', '.join(COMMANDS)} [config path]")
        return 2

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    try:
        config = config_manager.load_config(argv[1] if len(argv) > 1 else None)
    except ConfigError as e:
        logger.critical(f"Cannot start without a valid configuration: {e}")
        return 1
    logging.getLogger().setLevel(LOG_LEVELS[config.log_level])

    # 缓存与进程同生命周期：只启动一次，退出时关闭一次
    cache = ProxyCache.from_config(config)
    try:
        asyncio.run(run(command, config, cache))
    except KeyboardInterrupt:
        logger.info("Shutting down.")
    except OSError as e:
        logger.critical(f"Proxy listener failed: {e}")
        return 1
    finally:
        cache.shutdown(config.shutdown_grace)
    return 0


if __name__ == "__main__":
    sys.exit(main())
