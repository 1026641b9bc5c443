from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from functools import wraps
import logging
from typing import Callable, Optional

from flask import Flask, jsonify, redirect, render_template_string, request, session, url_for
from werkzeug.security import check_password_hash

from prayerdash.geocoding import GeocodingClient, GeocodingError
from prayerdash.next_prayer import next_prayer
from prayerdash.prayer_times import PRAYER_NAMES, PrayerTimeEngine, is_valid_hhmm


LOGIN_TEMPLATE = """
<!doctype html>
<title>Salat Times - Sign in</title>
<h1>Sign in</h1>
{% if error %}<p class="error">{{ error }}</p>{% endif %}
<form method="post" action="{{ url_for('login') }}">
  <p><input name="username" placeholder="Username" autocomplete="username" /></p>
  <p><input name="password" type="password" placeholder="Password" /></p>
  <p><button>Sign in</button></p>
</form>
"""


DASHBOARD_TEMPLATE = """
<!doctype html>
<title>Salat Times</title>
<h1>Salat Times</h1>
{% if error %}<p class="error">{{ error }}</p>{% endif %}
{% if schedule %}
<p>{{ schedule.date.isoformat() }} ({{ schedule.method.value }})</p>
<ul>
{% for entry in schedule.entries %}
  <li>{{ entry.display_name }}: {{ entry.time }}{% if entry.is_custom %} (custom){% endif %}</li>
{% endfor %}
</ul>
<p>Sunrise {{ schedule.extras.sunrise }} / Sunset {{ schedule.extras.sunset }}</p>
{% else %}
<p>Prayer times unavailable.</p>
{% endif %}
{% if upcoming %}<p>Next: {{ upcoming.name }} in {{ upcoming.time_remaining }}</p>{% endif %}
"""


def _login_required(view):
    @wraps(view)
    def guarded(*args, **kwargs):
        if session.get("user"):
            return view(*args, **kwargs)
        if request.path.startswith("/api/"):
            return jsonify({"error": "login required"}), 401
        return redirect(url_for("login"))

    return guarded


@dataclass
class ControlPanelServer:
    username: str
    password_hash: str
    engine: PrayerTimeEngine
    secret_key: str
    geocoder: Optional[GeocodingClient] = None
    now_provider: Optional[Callable[[], datetime]] = None
    host: str = "127.0.0.1"
    port: int = 8080

    def __post_init__(self) -> None:
        if self.now_provider is None:
            self.now_provider = self.engine.now
        self._logger = logging.getLogger(self.__class__.__name__)
        self._app = self._create_app()

    @property
    def app(self) -> Flask:
        return self._app

    def _create_app(self) -> Flask:
        app = Flask(__name__)
        app.secret_key = self.secret_key

        @app.route("/login", methods=["GET", "POST"])
        def login():
            error: Optional[str] = None
            if request.method == "POST":
                username = request.form.get("username", "")
                password = request.form.get("password", "")
                if username == self.username and check_password_hash(
                    self.password_hash, password
                ):
                    session["user"] = username
                    self._logger.info("Control panel login success for %s", username)
                    return redirect(url_for("dashboard"))
                self._logger.warning("Control panel login failed for %s", username)
                error = "Invalid credentials"
            return render_template_string(LOGIN_TEMPLATE, error=error)

        @app.route("/")
        @_login_required
        def dashboard():
            now = self.now_provider()
            schedule = self.engine.ensure_current(now.date()) or self.engine.schedule
            upcoming = next_prayer(schedule.entries, now) if schedule else None
            return render_template_string(
                DASHBOARD_TEMPLATE,
                schedule=schedule,
                upcoming=upcoming,
                error=self.engine.error,
            )

        @app.get("/api/prayer-times")
        @_login_required
        def prayer_times():
            schedule = self.engine.ensure_current(self.now_provider().date()) or self.engine.schedule
            payload = schedule.to_dict() if schedule else {"prayers": []}
            payload["error"] = self.engine.error
            return jsonify(payload)

        @app.get("/api/next-prayer")
        @_login_required
        def upcoming_prayer():
            now = self.now_provider()
            schedule = self.engine.ensure_current(now.date()) or self.engine.schedule
            if schedule is None:
                return jsonify({"error": self.engine.error}), 503
            return jsonify(next_prayer(schedule.entries, now).to_dict())

        @app.post("/api/custom-times")
        @_login_required
        def set_custom_times():
            data = request.get_json(silent=True)
            if not isinstance(data, dict):
                return jsonify({"error": "expected a JSON object"}), 400
            custom = {}
            for name, value in data.items():
                if name not in PRAYER_NAMES:
                    return jsonify({"error": f"unknown prayer: {name}"}), 400
                if value in (None, ""):
                    continue
                if not is_valid_hhmm(value):
                    return jsonify({"error": f"{name} must be HH:MM"}), 400
                custom[name] = value
            self.engine.set_custom_times(custom)
            self._logger.info("Custom prayer times updated: %s", custom)
            return self._schedule_response()

        @app.post("/api/custom-times/reset")
        @_login_required
        def reset_custom_times():
            self.engine.reset_custom_times()
            self._logger.info("Custom prayer times cleared")
            return self._schedule_response()

        @app.post("/api/settings")
        @_login_required
        def update_settings():
            data = request.get_json(silent=True)
            if not isinstance(data, dict):
                return jsonify({"error": "expected a JSON object"}), 400
            allowed = ("calculation_method", "madhab", "latitude", "longitude", "high_latitude_rule")
            changes = {key: data[key] for key in allowed if key in data}
            self.engine.update_settings(**changes)
            return self._schedule_response()

        @app.get("/api/cities")
        @_login_required
        def search_cities():
            if self.geocoder is None:
                return jsonify({"error": "city search disabled"}), 404
            query = request.args.get("q", "")
            try:
                places = self.geocoder.search(query)
            except GeocodingError as exc:
                self._logger.warning("City search failed: %s", exc)
                return jsonify({"error": "city search failed"}), 502
            return jsonify([place.to_dict() for place in places])

        return app

    def _schedule_response(self):
        schedule = self.engine.schedule
        payload = schedule.to_dict() if schedule else {"prayers": []}
        payload["error"] = self.engine.error
        return jsonify(payload)
