import csv
import glob
import io
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import uuid4

from .paths import ensure_dir

RETRO_LOG_HEADER = ("category", "mediaType", "provider", "query", "reason")


@dataclass(frozen=True)
class RetroFetchLogEntry:
    category: str | None
    media_type: str | None
    provider: str | None
    query: str | None
    reason: str | None


def _sanitize(value):
    if not value:
        return ""
    return str(value).replace("\r", " ").replace("\n", " ")


def format_csv_row(values):
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow([_sanitize(value) for value in values])
    return buffer.getvalue()


class RetroFetchLogService:
    """CSV log of posters a retro-fetch pass could not resolve."""

    def __init__(self, logs_dir):
        self.logs_dir = os.path.abspath(logs_dir)

    def create_log(self, now=None):
        ensure_dir(self.logs_dir)
        stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%d-%H%M%S")
        file_name = f"retro-fetch-{stamp}-{uuid4().hex[:6]}.csv"
        with open(os.path.join(self.logs_dir, file_name), "w", encoding="utf-8") as f:
            f.write(",".join(RETRO_LOG_HEADER) + "\n")
        return file_name

    def append_failure(self, log_file, entry):
        if not log_file or not str(log_file).strip():
            return
        safe_file = os.path.basename(str(log_file).strip())
        if not safe_file:
            return
        row = format_csv_row(
            [entry.category, entry.media_type, entry.provider, entry.query, entry.reason]
        )
        try:
            ensure_dir(self.logs_dir)
            with open(os.path.join(self.logs_dir, safe_file), "a", encoding="utf-8") as f:
                f.write(row)
        except OSError:
            logging.warning("Retro fetch log append failed (%s)", safe_file)

    def purge_log_files(self):
        deleted = 0
        for path in glob.glob(os.path.join(self.logs_dir, "retro-fetch-*.csv")):
            try:
                os.remove(path)
                deleted += 1
            except OSError:
                logging.warning("Retro fetch log purge: failed to delete %s", path)
        return deleted

    def resolve_log_path(self, log_file):
        if not log_file or not str(log_file).strip():
            return None
        safe_file = os.path.basename(str(log_file).strip())
        if not safe_file or not safe_file.lower().endswith(".csv"):
            return None
        return os.path.join(self.logs_dir, safe_file)
