import logging
import os
import sys

WORKFLOW_COMMANDS = {
    logging.DEBUG: "debug",
    logging.WARNING: "warning",
    logging.ERROR: "error",
    logging.CRITICAL: "error",
}


class WorkflowCommandFormatter(logging.Formatter):
    """Formats records as GitHub Actions workflow commands (``::warning::...``)."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        command = WORKFLOW_COMMANDS.get(record.levelno)
        if not command:
            return message
        # workflow commands are single-line; %0A is the escaped newline
        message = message.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")
        return f"::{command}::{message}"


def setup_logging(debug: bool = False) -> None:
    handler = logging.StreamHandler(sys.stdout)
    if os.environ.get("GITHUB_ACTIONS") == "true":
        handler.setFormatter(WorkflowCommandFormatter("%(message)s"))
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")
        )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    logging.getLogger("httpx").setLevel(logging.WARNING)
