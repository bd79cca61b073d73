import contextvars
import json
import logging
import re
from datetime import datetime, timezone

run_id_context: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    'run_id',
    default=None
)

LOGGER_NAME = "cnab_k8s_driver"


class RunContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        run_id = run_id_context.get()
        if run_id:
            record.run_id = run_id
        return True


class JSONFormatter(logging.Formatter):
    def _sanitize_sensitive_data(self, data: str) -> str:
        """Remove or mask sensitive information from log data."""
        patterns = [
            # API keys, tokens and passwords
            (r'(["\']?(?:api[_-]?)?(?:key|token|secret|password|passwd|pwd)["\']?\s*[:=]\s*["\']?)([^"\']+)(["\']?)',
             r'\1***API_KEY_OR_TOKEN_REDACTED***\3'),
            # Bearer tokens
            (r'(Bearer\s+)([A-Za-z0-9\-_]+)', r'\1***BEARER_TOKEN_REDACTED***'),
            # JWT tokens, e.g. service-account tokens
            (r'(eyJ[A-Za-z0-9\-_]+\.eyJ[A-Za-z0-9\-_]+\.[A-Za-z0-9\-_]+)', r'***JWT_REDACTED***'),
            # URLs with credentials, e.g. registry or API server URLs
            (r'(https?://[^:/\s]+:)([^@\s]+)(@)', r'\1***URL_CREDS_REDACTED***\3'),
        ]

        for pattern, replacement in patterns:
            data = re.sub(pattern, replacement, data, flags=re.IGNORECASE)

        return data

    def format(self, record: logging.LogRecord) -> str:
        message = self._sanitize_sensitive_data(record.getMessage())

        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": message,
        }

        if hasattr(record, 'run_id'):
            log_data['run_id'] = record.run_id

        if record.exc_info:
            exc_text = self.formatException(record.exc_info)
            log_data['exc_info'] = self._sanitize_sensitive_data(exc_text)

        if hasattr(record, 'stack_info') and record.stack_info:
            stack_text = self.formatStack(record.stack_info)
            log_data['stack_info'] = self._sanitize_sensitive_data(stack_text)

        return json.dumps(log_data, ensure_ascii=False)


def setup_logger(log_level: str = "INFO") -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(JSONFormatter())
    console_handler.addFilter(RunContextFilter())

    logger.addHandler(console_handler)

    level = getattr(logging, log_level.upper(), logging.INFO)
    logger.setLevel(level)

    return logger
