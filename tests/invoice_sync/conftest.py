import io
import json

import pytest

from eta_exporter.json_logger import JsonLogger


@pytest.fixture
def log_output() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def logger(log_output: io.StringIO) -> JsonLogger:
    return JsonLogger(stream=log_output, log_file_path=None)


@pytest.fixture
def events(log_output: io.StringIO):
    def _events() -> list[dict]:
        return [json.loads(line) for line in log_output.getvalue().splitlines() if line.strip()]

    return _events
