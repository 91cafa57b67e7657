from flask import jsonify, request
from flask_login import login_required, login_user, logout_user

from shelfmark.auth import auth_bp
from shelfmark.models import User


def _credentials():
    payload = request.get_json(silent=True) or request.form
    username = (payload.get("username") or "").strip()
    password = payload.get("password") or ""
    return username, password


@auth_bp.route("/login", methods=["POST"])
def login():
    username, password = _credentials()
    user = User.query.filter_by(username=username).first()
    if user and user.is_active and user.check_password(password):
        login_user(user)
        return jsonify({"status": "logged_in", "user_id": user.id})
    return jsonify({"error": "invalid credentials"}), 401


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"status": "logged_out"})
