import json
import logging
import os
import sys
from argparse import ArgumentParser
from logging import (
    CRITICAL,
    DEBUG,
    ERROR,
    INFO,
    WARNING,
    Formatter,
    LogRecord,
    StreamHandler,
    basicConfig,
    getLogger,
)
from typing import Any, Dict, Mapping, Optional

from cloudgraph.types import Json

TRACE = DEBUG - 5

getLogger().setLevel(ERROR)
getLogger("cloudgraph").setLevel(INFO)


def add_args(arg_parser: ArgumentParser) -> None:
    group = arg_parser.add_mutually_exclusive_group()
    group.add_argument("--verbose", "-v", help="Verbose logging", dest="verbose", action="store_true", default=False)
    group.add_argument("--trace", help="Trace logging", dest="trace", action="store_true", default=False)
    group.add_argument("--quiet", help="Only log errors", dest="quiet", action="store_true", default=False)


class JsonFormatter(Formatter):
    """
    Render every log record as one json object per line.
    fmt_dict maps the json key to the LogRecord attribute, e.g. {"level": "levelname"}.
    """

    def __init__(
        self,
        fmt_dict: Mapping[str, str],
        time_format: str = "%Y-%m-%dT%H:%M:%S",
        static_values: Optional[Dict[str, str]] = None,
    ) -> None:
        super().__init__()
        self.fmt_dict = fmt_dict
        self.time_format = time_format
        self.static_values = static_values or {}
        self.__use_time = "asctime" in self.fmt_dict.values()

    def usesTime(self) -> bool:  # noqa: N802
        return self.__use_time

    def json_message(self, record: LogRecord) -> Json:
        record.message = record.getMessage()
        if self.__use_time:
            record.asctime = self.formatTime(record, self.time_format)

        message: Json = {key: record.__dict__.get(attr) for key, attr in self.fmt_dict.items()}
        message.update(self.static_values)

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            message["exception"] = record.exc_text
        if record.stack_info:
            message["stack_info"] = self.formatStack(record.stack_info)
        return message

    def format(self, record: LogRecord) -> str:
        return json.dumps(self.json_message(record), default=str)


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "false").lower() == "true"


def setup_logger(
    proc: str,
    *,
    force: bool = True,
    verbose: bool = False,
    quiet: bool = False,
    level: Optional[str] = None,
    json_format: bool = True,
) -> None:
    # plain text output can be enforced via env var
    if json_format and not _env_flag("CLOUDGRAPH_LOG_TEXT"):
        handler = StreamHandler()
        handler.setFormatter(
            JsonFormatter(
                {
                    "timestamp": "asctime",
                    "level": "levelname",
                    "message": "message",
                    "pid": "process",
                    "thread": "threadName",
                },
                static_values={"process": proc},
            )
        )
        basicConfig(handlers=[handler], force=force, level=level)
    else:
        log_format = f"%(asctime)s|{proc}|%(levelname)5s|%(process)d|%(threadName)10s  %(message)s"
        log_format = os.environ.get("CLOUDGRAPH_LOG_FORMAT", log_format)
        basicConfig(format=log_format, datefmt="%y-%m-%d %H:%M:%S", force=force)

    argv = sys.argv[1:]
    if level:
        getLogger("cloudgraph").setLevel(level)
    elif "--trace" in argv or _env_flag("CLOUDGRAPH_TRACE"):
        getLogger("cloudgraph").setLevel(TRACE)
    elif verbose or "-v" in argv or "--verbose" in argv or _env_flag("CLOUDGRAPH_VERBOSE"):
        getLogger("cloudgraph").setLevel(DEBUG)
    elif quiet or "--quiet" in argv or _env_flag("CLOUDGRAPH_QUIET"):
        getLogger().setLevel(WARNING)
        getLogger("cloudgraph").setLevel(CRITICAL)


def add_logging_level(level_name: str, level_num: int, method_name: Optional[str] = None) -> None:
    """
    Add a new level to the logging module, together with a convenience method
    on the logger class (e.g. log.trace(...)).
    Raises AttributeError if the level or the method is already defined.
    """
    method_name = method_name or level_name.lower()
    if hasattr(logging, level_name) or hasattr(logging.getLoggerClass(), method_name):
        raise AttributeError(f"{level_name} already defined in logging module")

    def log_for_level(self: logging.Logger, message: str, *args: Any, **kwargs: Any) -> None:
        if self.isEnabledFor(level_num):
            self._log(level_num, message, args, **kwargs)

    logging.addLevelName(level_num, level_name)
    setattr(logging, level_name, level_num)
    setattr(logging.getLoggerClass(), method_name, log_for_level)


if not hasattr(logging, "TRACE"):
    add_logging_level("TRACE", TRACE)

log = getLogger("cloudgraph")
