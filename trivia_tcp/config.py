"""
Server connection settings (host and port) read from server_info.dat.

File format, one setting per line:
    host=localhost
    port=1234

Lines starting with '#' or '!' are comments. A missing file, an unreadable
file or a bad port value never fails the caller: the defaults are used and a
warning is logged.
"""

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

CONFIG_FILE = "server_info.dat"
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 1234
ENCODING = "utf-8"


@dataclass(frozen=True)
class ServerConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT


def _parse_port(raw: str) -> int:
    port = int(raw)
    if not 0 < port < 65536:
        raise ValueError(f"port out of range: {port}")
    return port


def load_server_config(path: str = CONFIG_FILE) -> ServerConfig:
    """
    Load host/port from `path`, falling back to defaults for anything
    missing or invalid.
    """
    values = {}
    try:
        with open(path, "r", encoding=ENCODING) as f:
            for raw_line in f:
                line = raw_line.strip()
                if not line or line[0] in "#!":
                    continue

                # Accept "key=value" and "key: value"
                for sep in ("=", ":"):
                    if sep in line:
                        key, value = line.split(sep, 1)
                        values[key.strip().lower()] = value.strip()
                        break
                else:
                    logger.warning("Ignoring malformed line in %s: %s", path, line)
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Could not read %s: %s", path, exc)
        config = ServerConfig()
        logger.info("Using default configuration - Host: %s, Port: %d", config.host, config.port)
        return config

    host = values.get("host") or DEFAULT_HOST

    port = DEFAULT_PORT
    if "port" in values:
        try:
            port = _parse_port(values["port"])
        except ValueError:
            logger.warning("Invalid port number in config file. Using default: %d", DEFAULT_PORT)
            port = DEFAULT_PORT

    logger.info("Loaded configuration from %s", path)
    return ServerConfig(host=host, port=port)


def create_default_config_file(path: str = CONFIG_FILE) -> bool:
    """
    Write the default settings to `path` unless it already exists.

    Returns True if a file was created.
    """
    if os.path.exists(path):
        return False

    try:
        with open(path, "w", encoding=ENCODING) as f:
            f.write("# Quiz Server Configuration\n")
            f.write(f"host={DEFAULT_HOST}\n")
            f.write(f"port={DEFAULT_PORT}\n")
    except OSError as exc:
        logger.error("Failed to create configuration file %s: %s", path, exc)
        return False

    logger.info("Created default configuration file: %s", path)
    return True
