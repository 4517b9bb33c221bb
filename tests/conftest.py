"""
tests/conftest.py
"""
from __future__ import annotations

from pathlib import Path
from typing import Callable, Generator

import pytest
from flask.testing import FlaskClient

# The single-file app lives here:
from folio.blog import app  # noqa: WPS433 (importing from a module)


@pytest.fixture(scope="session", autouse=True)
def _configure_app() -> None:
    """Configure the Flask app *once* before the first test runs."""
    app.config.update(TESTING=True)


@pytest.fixture(autouse=True)
def _fresh_counters() -> None:
    """Every test starts with empty like/view stores."""
    for store in app.extensions["counters"].values():
        store.reset()


@pytest.fixture(autouse=True)
def content_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point CONTENT_DIR at an empty per-test directory."""
    posts = tmp_path / "posts"
    posts.mkdir()
    monkeypatch.setitem(app.config, "CONTENT_DIR", str(posts))
    return posts


@pytest.fixture
def write_post(content_dir: Path) -> Callable[..., Path]:
    """
    Drop a post with front matter into the content dir.

    ``write_post("slug", title="T", publishedAt="2024-01-01")``
    """

    def _write(slug: str, *, suffix: str = ".mdx", body: str = "Hello.\n", **meta) -> Path:
        lines = ["---", *(f"{k}: '{v}'" for k, v in meta.items()), "---", "", body]
        path = content_dir / f"{slug}{suffix}"
        path.write_text("\n".join(lines), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def client() -> Generator[FlaskClient, None, None]:
    """
    Gives each test an isolated application context *and* test client.

    Yields:
        `flask.testing.FlaskClient`
    """
    with app.test_client() as client:
        with app.app_context():
            yield client
