"""Shared fixtures for unit tests."""

import logging

import pytest


@pytest.fixture(autouse=True)
def enable_log_propagation():
    """Ensure logs propagate to root so caplog can catch them."""
    logger = logging.getLogger("sitehost")
    old_propagate = logger.propagate
    old_level = logger.level
    logger.propagate = True
    yield
    logger.propagate = old_propagate
    logger.setLevel(old_level)


@pytest.fixture(name="site_root")
def site_root_fixture(tmp_path):
    """Create a small site tree laid out like the default mount table."""
    root = tmp_path / "web"
    (root / "css").mkdir(parents=True)
    (root / "js").mkdir()
    (root / "img").mkdir()
    (root / "vendor" / "jquery").mkdir(parents=True)
    (root / "vendor" / "bootstrap").mkdir()
    (root / "blog").mkdir()
    (root / "drafts").mkdir()
    (root / "index.html").write_text("<h1>home</h1>")
    (root / "about.html").write_text("<p>about</p>")
    (root / "blog" / "index.html").write_text("<p>blog</p>")
    (root / "drafts" / "notes.html").write_text("<p>draft</p>")
    (root / "css" / "site.css").write_text("body { margin: 0; }")
    (root / "js" / "app.js").write_text("console.log('app');")
    (root / "img" / "logo.png").write_bytes(b"\x89PNG\r\n\x1a\nlogo")
    (root / "vendor" / "jquery" / "jquery.min.js").write_text("/*! jQuery */")
    (root / "vendor" / "bootstrap" / "bootstrap.min.css").write_text(".btn{}")
    return root
