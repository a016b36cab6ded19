import os
import sys
from pathlib import Path
from typing import Generator

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from shared.config import DEFAULT_TEMPLATE_DIR, config as service_config

LINE_ART_SVG = """<svg xmlns="http://www.w3.org/2000/svg" width="200" height="200" viewBox="0 0 200 200">
  <rect x="10" y="10" width="180" height="180" fill="none" stroke="#000000" stroke-width="4"/>
  <circle cx="100" cy="100" r="50" fill="#ff0000"/>
  <path d="M40 160 L160 40" stroke="#1a1a1a" stroke-width="6"/>
</svg>"""


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Isolate global configuration between tests."""
    saved_config = dict(service_config.config)
    saved_pipeline = dict(service_config.pipeline_config)

    for key in list(os.environ):
        if key.startswith("PIPELINE_FLAG_"):
            monkeypatch.delenv(key, raising=False)

    service_config.set("template_dir", DEFAULT_TEMPLATE_DIR)
    service_config.set("container_auth_secret", None)
    service_config.set("environment", "test")
    service_config.set("internal_api_token", "test-token")
    service_config.set("api_url", "https://api.test")

    try:
        yield
    finally:
        service_config.config = saved_config
        service_config.pipeline_config = saved_pipeline


@pytest.fixture
def line_art_svg() -> str:
    return LINE_ART_SVG


@pytest.fixture
def empty_template_dir(tmp_path: Path) -> Path:
    """Point template lookup at a directory without any templates."""
    service_config.set("template_dir", str(tmp_path))
    return tmp_path
