from functools import wraps
from flask import g, jsonify, session


def login_required(view):
    """Reject the request unless the session carries a user id; exposes it as g.user_id."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        user_id = session.get("user_id")
        if not user_id:
            return jsonify({"error": "Not authenticated"}), 401
        g.user_id = user_id
        return view(*args, **kwargs)
    return wrapper
