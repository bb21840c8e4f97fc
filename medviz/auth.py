"""Session based sign-in for medviz.

Request handlers only ever ask :func:`current_user` who is signed in; how the
user got into the session (here: username and password checked against a
werkzeug hash) stays inside this module.
"""

from __future__ import annotations

import functools
import logging
import re
import sqlite3
from typing import Any, Callable, Dict, Optional

from flask import flash, g, jsonify, redirect, request, session, url_for
from werkzeug.security import check_password_hash, generate_password_hash

from . import db

logger = logging.getLogger("medviz.auth")

_USERNAME_RX = re.compile(r"^[A-Za-z0-9_.\-]{3,64}$")
MIN_PASSWORD_LENGTH = 6


class UsernameTakenError(ValueError):
    pass


def _public_user(row: Any) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "username": row["username"],
        "name": row["name"] or row["username"],
        "email": row["email"],
        "loginMethod": row["login_method"],
        "role": row["role"],
    }


def current_user() -> Optional[Dict[str, Any]]:
    """Return the signed-in user for this request, or None."""
    if "current_user" in g:
        return g.current_user

    user = None
    user_id = session.get("user_id")
    if user_id is not None:
        row = db.get_user_by_id(int(user_id))
        if row is None:
            # account vanished (e.g. database reset); drop the stale session
            session.clear()
        else:
            user = _public_user(row)
    g.current_user = user
    return user


def login_required(view: Callable) -> Callable:
    """Require a signed-in user; API routes answer 401, pages redirect."""

    @functools.wraps(view)
    def wrapped(*args, **kwargs):
        if current_user() is None:
            if request.path.startswith("/api/"):
                return jsonify({"error": "Please login"}), 401
            flash("Please log in to continue.", "error")
            return redirect(url_for("login", next=request.path))
        return view(*args, **kwargs)

    return wrapped


def authenticate(username: str, password: str) -> Optional[Dict[str, Any]]:
    user = db.get_user_by_username((username or "").strip())
    if user and check_password_hash(user["password_hash"], password or ""):
        return _public_user(user)
    return None


def register(username: str, password: str, name: str = "", email: str = "") -> int:
    """Create a password account and return its id."""
    username = (username or "").strip()
    if not _USERNAME_RX.match(username):
        raise ValueError("Username must be 3-64 letters, digits, dots, dashes or underscores.")
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if db.get_user_by_username(username):
        raise UsernameTakenError("Username already exists. Please choose a different one.")
    try:
        user_id = db.create_user(
            username, generate_password_hash(password), (name or "").strip(), (email or "").strip()
        )
    except sqlite3.IntegrityError as exc:
        # lost a race with a concurrent signup for the same name
        raise UsernameTakenError("Username already exists. Please choose a different one.") from exc
    logger.info("Created user #%d (%s)", user_id, username)
    return user_id


def login_user(user: Dict[str, Any]) -> None:
    session.clear()
    session["user_id"] = user["id"]
    g.current_user = user
    db.touch_last_signed_in(user["id"])


def logout_user() -> None:
    session.clear()
    g.current_user = None
