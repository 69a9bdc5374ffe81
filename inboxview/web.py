"""Web interface for reading disposable inboxes."""

import atexit
import hashlib
import os
import re
import time
from datetime import datetime
from functools import partial

from faker import Faker
from flask import Flask, g, redirect, render_template, request, url_for

from inboxview import history
from inboxview.codec import IdentifierCodec
from inboxview.config import Settings
from inboxview.decoder import decode_header, decode_message
from inboxview.errors import BackendError, ValidationError
from inboxview.geo import GeoCache, lookup_country
from inboxview.imap.auth import open_session
from inboxview.imap.pool import ConnectionPool
from inboxview.imap.query import MailboxQuery, address_for, parse_date
from inboxview.sanitizer import HtmlSanitizer

# Regex to find external images in HTML
EXTERNAL_IMAGE_RE = re.compile(
    r'<img\s+([^>]*\s)?src\s*=\s*["\']?(https?://[^"\'>\s]+)["\']?',
    re.IGNORECASE,
)

BLANK_GIF = "data:image/gif;base64,R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7"

GENERIC_FAILURE = (
    "The server could not process your request. "
    "The mailbox is unavailable right now, please try again in a moment."
)
UNKNOWN_MESSAGE = "The requested message does not exist."

ROBOTS_TXT = "User-agent: *\nDisallow: /"

# /random/<kind> generators; anything else gets a user name
RANDOM_GENERATORS = {
    "md5": lambda fake: fake.md5(),
    "sha256": lambda fake: fake.sha256(),
    "number": lambda fake: fake.random_number(digits=10, fix_len=True),
    "ipv4": lambda fake: fake.ipv4_public(),
    "word": lambda fake: fake.word(),
    "name": lambda fake: fake.first_name(),
}


def block_external_images(html: str) -> tuple[str, bool]:
    """Block external images in HTML by replacing src with data-src.

    Args:
        html: HTML content

    Returns:
        Tuple of (modified HTML, whether external images were found)
    """
    if not EXTERNAL_IMAGE_RE.search(html):
        return html, False

    def replace_src(match):
        prefix = match.group(1) or ""
        return f'<img {prefix}data-src="{match.group(2)}" src="{BLANK_GIF}"'

    return EXTERNAL_IMAGE_RE.sub(replace_src, html), True


def random_name(kind: str, fake: Faker = None) -> str:
    """Generate a random inbox name without spaces."""
    fake = fake or Faker()
    generator = RANDOM_GENERATORS.get(kind, lambda f: f.user_name())
    return str(generator(fake)).replace(" ", "")


def digest(value) -> str:
    """First 12 hex chars of the SHA-256 of a value."""
    return hashlib.sha256(str(value or "").encode("utf-8")).hexdigest()[:12]


def format_timestamp(value, fmt: str) -> str:
    """Format a datetime or date string, or ``n.a.`` when there is none."""
    if isinstance(value, str):
        value = parse_date(value)
    if not isinstance(value, datetime):
        return "n.a."
    return value.strftime(fmt).strip()


def create_app(
    settings: Settings,
    mailbox: MailboxQuery = None,
    codec: IdentifierCodec = None,
    sanitizer: HtmlSanitizer = None,
    geo_lookup=None,
    verbose: bool = False,
) -> Flask:
    """Create the Flask application.

    Args:
        settings: Process-wide settings
        mailbox: Query engine (default: pooled sessions built from settings)
        codec: Message id codec (default: one with a fresh random salt)
        sanitizer: HTML sanitizer for previews (default: not started, escapes HTML)
        geo_lookup: Country lookup for the log view (default: ip-api.com)
        verbose: Enable request timing logs

    Returns:
        Flask application
    """
    # Set templates and static directories relative to this module
    template_dir = os.path.join(os.path.dirname(__file__), "templates")
    static_dir = os.path.join(os.path.dirname(__file__), "static")
    app = Flask(__name__, template_folder=template_dir, static_folder=static_dir)

    codec = codec or IdentifierCodec.generate()
    if mailbox is None:
        pool = ConnectionPool(
            partial(open_session, settings.connection, settings.credentials),
            max_size=settings.pool_size,
            timeout=settings.pool_timeout,
        )
        atexit.register(pool.close)
        app.config["pool"] = pool
        mailbox = MailboxQuery(pool, codec, limit=settings.inbox_size)
    sanitizer = sanitizer or HtmlSanitizer()
    geo_lookup = geo_lookup or lookup_country

    app.config["settings"] = settings
    app.config["mailbox"] = mailbox
    app.config["codec"] = codec
    app.config["sanitizer"] = sanitizer

    app.add_template_filter(digest, "digest")
    app.add_template_filter(decode_header, "decode_header")
    app.add_template_filter(
        lambda value: format_timestamp(value, settings.datetime_format), "timestamp"
    )

    @app.context_processor
    def inject_domain():
        return {"mail_domain": settings.mail_domain}

    if verbose:
        @app.before_request
        def before_request():
            g.start_time = time.time()

        @app.after_request
        def after_request(response):
            if hasattr(g, "start_time"):
                elapsed = time.time() - g.start_time
                print(f"[{request.method}] {request.path} - {elapsed:.2f}s", flush=True)
            return response

    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        return render_template("error.html", message=str(e)), 400

    @app.errorhandler(BackendError)
    def handle_backend_error(e):
        app.logger.warning("Backend failure on %s: %s", request.path, e)
        return render_template("error.html", message=GENERIC_FAILURE), 503

    def decode_token(token: str) -> int:
        uid = codec.decode(token)
        if uid is None:
            raise ValidationError(UNKNOWN_MESSAGE)
        return uid

    @app.route("/robots.txt")
    def robots():
        return ROBOTS_TXT, 200, {"Content-Type": "text/plain; charset=utf-8"}

    @app.route("/")
    def home():
        return render_template("home.html", kinds=sorted(RANDOM_GENERATORS))

    @app.route("/inbox")
    def inbox_search():
        query = request.args.get("q", "").strip()
        if not query:
            return redirect(url_for("home"))
        return redirect(url_for("inbox", name=query))

    @app.route("/inbox/<path:name>")
    def inbox(name: str):
        address = address_for(name, settings.mail_domain)
        emails = mailbox.list_messages(address)
        history.append_entry(
            settings.log_file, address, request.remote_addr, request.user_agent.string
        )
        return render_template("inbox.html", mailbox=address, emails=emails)

    @app.route("/email/<token>")
    def view_email(token: str):
        uid = decode_token(token)
        detail = decode_message(mailbox.fetch_message(uid))
        return render_template("email.html", mail=detail, token=token)

    @app.route("/preview/<token>")
    def preview(token: str):
        uid = decode_token(token)
        detail = decode_message(mailbox.fetch_message(uid))
        body = detail.preview
        is_html = detail.html_body is not None and body is detail.html_body
        images_blocked = False
        if is_html:
            body, images_blocked = block_external_images(body)
            body = sanitizer.sanitize(body)
        return render_template(
            "preview.html", body=body, is_html=is_html, images_blocked=images_blocked
        )

    @app.route("/log")
    def view_log():
        entries = history.tail(settings.log_file, settings.log_size)
        entries = GeoCache(geo_lookup).annotate(entries)
        return render_template("log.html", history=list(reversed(entries)))

    @app.route("/random/<kind>")
    def random_inbox(kind: str):
        return redirect(url_for("inbox_search", q=random_name(kind)))

    @app.route("/<path:path>")
    def catch_all(path: str):
        return redirect(url_for("home"))

    return app


def run_server(
    settings: Settings,
    host: str = "127.0.0.1",
    port: int = 8080,
    debug: bool = False,
    verbose: bool = False,
) -> None:
    """Run the web server.

    Args:
        settings: Process-wide settings
        host: Host to bind to
        port: Port to listen on
        debug: Enable debug mode
        verbose: Enable request timing logs
    """
    sanitizer = HtmlSanitizer()
    sanitizer.start()
    atexit.register(sanitizer.stop)

    app = create_app(settings, sanitizer=sanitizer, verbose=verbose)

    print("\n🌐 inboxview web interface")
    print(f"   Running at: http://{host}:{port}")
    print(f"   Mail domain: {settings.mail_domain}")
    print(f"   Mailbox: {settings.credentials.username}@{settings.connection.host}")
    print(f"   Pool size: {settings.pool_size}")
    if verbose:
        print("   Verbose logging enabled")
    if not sanitizer.available:
        print("   HTML previews shown as text (Node.js sanitizer unavailable)")
    print("   Press Ctrl+C to stop\n")

    app.run(host=host, port=port, debug=debug, threaded=True)
