"""Console and JSON-lines logging with secret redaction."""

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional

# Record attributes copied into JSON output when present
STRUCTURED_FIELDS = ('command', 'resource_id', 'resource_kind', 'operation', 'duration')


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for the log file."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'ts': datetime.utcnow().isoformat(timespec='milliseconds') + 'Z',
            'level': record.levelname.lower(),
            'logger': record.name,
            'msg': record.getMessage(),
        }

        for name in STRUCTURED_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = round(value, 3) if name == 'duration' else value

        if record.exc_info:
            entry['exc'] = redaction_filter.redact(self.formatException(record.exc_info))

        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Short colored lines for stderr.

    Records emitted for a resource are prefixed with its id and, when set,
    the operation being applied.
    """

    LEVEL_COLORS = {
        logging.DEBUG: '\033[2m',
        logging.INFO: '\033[36m',
        logging.WARNING: '\033[33m',
        logging.ERROR: '\033[31m',
        logging.CRITICAL: '\033[1;31m',
    }
    RESET = '\033[0m'

    def __init__(self, use_color: Optional[bool] = None):
        super().__init__()
        self.use_color = sys.stderr.isatty() if use_color is None else use_color

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname.lower():<7}"
        if self.use_color:
            level = f"{self.LEVEL_COLORS.get(record.levelno, '')}{level}{self.RESET}"

        resource_id = getattr(record, 'resource_id', None)
        operation = getattr(record, 'operation', None)
        prefix = ''
        if resource_id:
            prefix = f"{resource_id}/{operation}: " if operation else f"{resource_id}: "

        line = f"{datetime.now().strftime('%H:%M:%S')} {level} {prefix}{record.getMessage()}"
        if record.exc_info:
            line += '\n' + redaction_filter.redact(self.formatException(record.exc_info))
        return line


class SecretRedactionFilter(logging.Filter):
    """Replaces known secret values in log messages with a mask."""

    MASK = '****'

    def __init__(self, secrets: Optional[Iterable[str]] = None):
        super().__init__()
        self._secrets = set()
        for value in secrets or []:
            self.add_secret(value)

    def add_secret(self, value: str) -> None:
        """Register a secret value to be masked."""
        if value:
            self._secrets.add(value)

    def redact(self, text: str) -> str:
        """Mask every registered secret in text."""
        # Longest first so a secret containing another is masked whole
        for secret in sorted(self._secrets, key=len, reverse=True):
            text = text.replace(secret, self.MASK)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        message = record.getMessage()
        redacted = self.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


# Shared by every handler installed through setup_logging
redaction_filter = SecretRedactionFilter()


def setup_logging(log_level: str = 'info', log_dir: Optional[str] = '.mlstack/logs') -> None:
    """Install the stderr handler and, unless log_dir is None, the daily JSON log file.

    The file always receives DEBUG records; log_level only applies to stderr.
    """
    console_level = getattr(logging, log_level.upper())

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(logging.DEBUG if log_dir else console_level)

    # stdout is reserved for plan and result tables
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(ConsoleFormatter())
    console.addFilter(redaction_filter)
    root.addHandler(console)

    if log_dir:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        log_file = directory / f"mlstack-{datetime.utcnow():%Y%m%d}.jsonl"
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter())
        file_handler.addFilter(redaction_filter)
        root.addHandler(file_handler)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogContext:
    """Stamps fixed fields on every record created inside the block.

    Example:
        with LogContext(logger, command='apply'):
            ...
    """

    def __init__(self, logger: logging.Logger, **fields: Any):
        self.logger = logger
        self.fields = fields
        self._previous_factory = None

    def __enter__(self):
        previous = logging.getLogRecordFactory()
        fields = self.fields

        def factory(*args, **kwargs):
            record = previous(*args, **kwargs)
            record.__dict__.update(fields)
            return record

        self._previous_factory = previous
        logging.setLogRecordFactory(factory)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._previous_factory is not None:
            logging.setLogRecordFactory(self._previous_factory)
            self._previous_factory = None
