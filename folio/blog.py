#!/usr/bin/env python3
"""
Like and view counters (plus a small post index) for a personal blog.
"""

import json
import math
import os
import threading
from datetime import date, datetime, timezone
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

import click
import frontmatter
import yaml
from flask import Flask, Response, current_app, request
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

################################################################################
# Imports & constants
################################################################################

ROOT = Path(__file__).parent
CONTENT_DIR_DEFAULT = Path(os.environ.get("FOLIO_CONTENT_DIR", str(ROOT / "posts")))
LOG_LEVEL = os.environ.get("FOLIO_LOG_LEVEL", "INFO").upper()
SITE_NAME = os.environ.get("FOLIO_SITE_NAME", "folio")

JSON_CONTENT_TYPE = "application/json; charset=utf-8"
COUNTER_NAMES = ("likes", "views")
POST_SUFFIXES = (".md", ".mdx")

try:
    __version__ = version("folio")
except PackageNotFoundError:
    __version__ = "0.1.0-dev"


################################################################################
# Counter store
################################################################################
def _safe_count(value) -> int:
    """Anything that is not a finite number >= 0 counts as zero."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if not math.isfinite(value) or value < 0:
        return 0
    return int(value)


class CounterStore:
    """
    In-memory ``slug → count`` mapping owned by one counter service.

    • A slug that was never incremented has count 0; no zero entries are kept.
    • Slugs are compared verbatim; callers trim them if they need to.
    • One lock per store serialises every read-modify-write, so concurrent
      increments of the same slug are never lost.
    • Nothing is persisted. ``get``/``increment`` are the seam a durable
      backend would plug into.
    """

    def __init__(self, name: str):
        self.name = name
        self._counts: dict[str, int] = {}
        self._lock = threading.Lock()

    def get(self, slug: str) -> int:
        with self._lock:
            return _safe_count(self._counts.get(slug))

    def increment(self, slug: str) -> int:
        """Add exactly one to *slug* and return the new count."""
        with self._lock:
            count = _safe_count(self._counts.get(slug)) + 1
            self._counts[slug] = count
        return count

    def reset(self) -> None:
        with self._lock:
            self._counts.clear()

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {slug: _safe_count(n) for slug, n in self._counts.items()}

    def __len__(self) -> int:
        with self._lock:
            return len(self._counts)

    def __repr__(self) -> str:
        return f"<CounterStore {self.name!r} slugs={len(self)}>"


def init_counters(flask_app: Flask) -> dict[str, CounterStore]:
    """Create one empty store per counter service and hang them on the app."""
    stores = {name: CounterStore(name) for name in COUNTER_NAMES}
    flask_app.extensions["counters"] = stores
    return stores


def counter_store(name: str) -> CounterStore:
    return current_app.extensions["counters"][name]


################################################################################
# App
################################################################################
app = Flask(__name__)
app.url_map.strict_slashes = False
app.config.update(
    CONTENT_DIR=str(CONTENT_DIR_DEFAULT),
    LOG_LEVEL=LOG_LEVEL,
    SITE_NAME=SITE_NAME,
)
app.logger.setLevel(app.config["LOG_LEVEL"])
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)
init_counters(app)


###############################################################################
# JSON helpers
###############################################################################
def json_response(body, status: int = 200, *, cache: bool = False) -> Response:
    """
    Serialise *body* as compact UTF-8 JSON.

    Counters change on every hit, so responses are ``no-store`` unless
    *cache* is set.
    """
    resp = Response(
        json.dumps(body, ensure_ascii=False, separators=(",", ":")),
        status=status,
        content_type=JSON_CONTENT_TYPE,
    )
    if not cache:
        resp.headers["Cache-Control"] = "no-store"
    return resp


def error_response(message: str, status: int) -> Response:
    return json_response({"error": message}, status)


###############################################################################
# Errors
###############################################################################
class ClientError(Exception):
    """A request the client has to fix; rendered as ``{"error": message}``."""

    status = 400
    message = "Bad request"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class MissingParameter(ClientError):
    message = 'Missing required "slug" query parameter'


class InvalidBody(ClientError):
    message = "Invalid JSON in request body"


class MissingOrInvalidSlug(ClientError):
    message = 'Request body must include a non-empty "slug" field'


class PostNotFound(ClientError):
    status = 404
    message = "Post not found"


@app.errorhandler(ClientError)
def client_error(exc: ClientError):
    app.logger.info("%s %s → %d %s", request.method, request.path, exc.status, exc.message)
    return error_response(exc.message, exc.status)


@app.errorhandler(404)
def not_found(exc):
    return error_response("Not found", 404)


@app.errorhandler(405)
def method_not_allowed(exc):
    resp = error_response("Method not allowed", 405)
    if isinstance(exc, HTTPException) and getattr(exc, "valid_methods", None):
        resp.headers["Allow"] = ", ".join(exc.valid_methods)
    return resp


@app.errorhandler(500)
def internal_error(exc):
    """
    Generic 500 for production.
    • Flask has already logged the traceback through ``app.logger`` by the
      time this runs; nothing of it reaches the client.
    • With debug on (or PROPAGATE_EXCEPTIONS) Flask bypasses this handler.
    """
    return error_response("Internal Server Error", 500)


@app.after_request
def sec_headers(resp):
    resp.headers.update(
        {
            "X-Frame-Options": "DENY",
            "X-Content-Type-Options": "nosniff",
            "Referrer-Policy": "strict-origin-when-cross-origin",
        }
    )
    return resp


###############################################################################
# Likes
###############################################################################
@app.route("/likes/<slug>", methods=["GET"])
def get_likes(slug):
    return json_response({"likes": counter_store("likes").get(slug)})


@app.route("/likes/<slug>", methods=["POST"])
def increment_likes(slug):
    likes = counter_store("likes").increment(slug)
    app.logger.debug("like #%d for %r", likes, slug)
    return json_response({"likes": likes})


###############################################################################
# Views
###############################################################################
def _slug_from_body(raw: bytes) -> str:
    """Parse a ``{"slug": ...}`` body and return the trimmed slug."""
    try:
        data = json.loads(raw)
    except ValueError:  # JSONDecodeError and UnicodeDecodeError alike
        raise InvalidBody() from None

    slug = data.get("slug") if isinstance(data, dict) else None
    if not isinstance(slug, str) or not slug.strip():
        raise MissingOrInvalidSlug()
    return slug.strip()


@app.route("/views", methods=["GET"])
def get_views():
    # the query value is used exactly as sent, no trimming
    slug = request.args.get("slug")
    if not slug:
        raise MissingParameter()
    return json_response({"slug": slug, "views": counter_store("views").get(slug)})


@app.route("/views", methods=["POST"])
def increment_views():
    slug = _slug_from_body(request.get_data(cache=False))
    views = counter_store("views").increment(slug)
    app.logger.debug("view #%d for %r", views, slug)
    return json_response({"slug": slug, "views": views})


###############################################################################
# Authors
###############################################################################
DEFAULT_AUTHOR_ID = "default"
AUTHORS = (
    {
        "id": DEFAULT_AUTHOR_ID,
        "name": "Dingco",
        "bio": "A blogger who writes about development and technology.",
        "avatar": "/authors/placeholder.svg",
    },
)


def get_author_by_id(author_id: str | None) -> dict | None:
    for author in AUTHORS:
        if author["id"] == author_id:
            return dict(author)
    return None


def get_default_author() -> dict:
    return dict(AUTHORS[0])


def get_author(author_id: str | None) -> dict:
    """Known author for *author_id*, otherwise the site's default author."""
    return get_author_by_id(author_id) or get_default_author()


###############################################################################
# Posts
###############################################################################
def _meta_str(value) -> str:
    """YAML hands back dates, numbers and the like; the index serves strings."""
    if value is None:
        return ""
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def parse_front_matter(text: str) -> dict[str, str] | None:
    """
    Read the leading YAML block of a post into a flat dict of strings.

    Returns ``None`` when the file has no front matter at all.
    """
    post = frontmatter.loads(text.lstrip("\ufeff"))
    if not post.metadata:
        return None
    return {str(k): _meta_str(v) for k, v in post.metadata.items()}


def parse_published(value: str | None) -> datetime | None:
    if not value:
        return None
    value = value.strip()
    # fromisoformat only learned the "Z" suffix in 3.11
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None
    # compare everything as naive UTC
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def load_post(path: Path) -> dict | None:
    try:
        meta = parse_front_matter(path.read_text(encoding="utf-8"))
    except (OSError, ValueError, yaml.YAMLError):
        app.logger.warning("Could not read post %s", path, exc_info=True)
        return None
    if not meta or not meta.get("title"):
        app.logger.warning("Skipping %s: missing front matter title", path.name)
        return None
    return {
        "slug": path.stem,
        "title": meta["title"],
        "publishedAt": meta.get("publishedAt", ""),
        "summary": meta.get("summary", ""),
        "image": meta.get("image") or None,
        "author": meta.get("author") or DEFAULT_AUTHOR_ID,
    }


def get_blog_posts(content_dir: str | Path | None = None) -> list[dict]:
    """All posts in the content dir, newest first; undated posts sort last."""
    root = Path(content_dir or app.config["CONTENT_DIR"])
    if not root.is_dir():
        return []
    posts = []
    for path in sorted(root.iterdir()):
        if not path.is_file() or path.suffix not in POST_SUFFIXES:
            continue
        post = load_post(path)
        if post is not None:
            posts.append(post)

    # ── stable sort: slug asc is kept for equal dates ───────────────────
    def key(post):
        dt = parse_published(post["publishedAt"])
        return (dt is not None, dt or datetime.min)

    return sorted(posts, key=key, reverse=True)


def find_post(slug: str) -> dict | None:
    return next((p for p in get_blog_posts() if p["slug"] == slug), None)


def _with_counts(post: dict) -> dict:
    return {
        "views": counter_store("views").get(post["slug"]),
        "likes": counter_store("likes").get(post["slug"]),
    }


@app.route("/posts")
def list_posts():
    posts = []
    for post in get_blog_posts():
        author = get_author(post["author"])
        posts.append(
            {
                "slug": post["slug"],
                "title": post["title"],
                "publishedAt": post["publishedAt"],
                "summary": post["summary"],
                "author": {"id": author["id"], "name": author["name"]},
                **_with_counts(post),
            }
        )
    return json_response({"posts": posts})


@app.route("/posts/<slug>")
def post_detail(slug):
    post = find_post(slug)
    if post is None:
        raise PostNotFound()
    detail = {k: v for k, v in post.items() if k != "author"}
    detail["author"] = get_author(post["author"])
    detail.update(_with_counts(post))
    return json_response({"post": detail})


@app.route("/health")
def health():
    return json_response(
        {"status": "ok", "service": app.config["SITE_NAME"], "version": __version__}
    )


###############################################################################
# CLI
###############################################################################
@app.cli.command("posts")
@click.option(
    "--content-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding the .md/.mdx posts (defaults to CONTENT_DIR).",
)
def cli_posts(content_dir: Path | None):
    """List posts newest first."""
    posts = get_blog_posts(content_dir)
    if not posts:
        click.secho("No posts found.", fg="yellow")
        return
    for post in posts:
        click.echo(f"{post['publishedAt'] or '-':<12} {post['slug']:<32} {post['title']}")


###############################################################################
# main
###############################################################################
if __name__ == "__main__":
    app.run(debug=True)
