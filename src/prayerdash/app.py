from __future__ import annotations

import argparse
from datetime import date
import logging
import os
from pathlib import Path
import threading
from typing import Iterable, Optional

from prayerdash.config import AppConfig, ConfigError, ConfigLoader
from prayerdash.geocoding import GeocodingClient
from prayerdash.logging_utils import LoggerFactory
from prayerdash.methods import resolve_high_latitude_rule, resolve_madhab, resolve_method
from prayerdash.next_prayer import NextPrayerState, NextPrayerTicker
from prayerdash.prayer_times import (
    GeoCoordinate,
    PrayerSettings,
    PrayerTimeEngine,
    location_clock,
)
from prayerdash.scheduler import DailyRefreshScheduler


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = _parse_args(argv)
    try:
        config_path = Path(args.config) if args.config else None
        config = ConfigLoader(config_path=config_path).load()
        day = date.fromisoformat(args.date) if args.date else None
    except ConfigError as exc:
        LoggerFactory.create("")
        logging.getLogger("prayerdash").error("Config error: %s", exc)
        return 2
    except ValueError as exc:
        LoggerFactory.create("")
        logging.getLogger("prayerdash").error("Invalid --date: %s", exc)
        return 2

    log_path = os.getenv("PRAYERDASH_LOG_PATH") or config.logging.file_path
    LoggerFactory.create("", log_file=log_path)
    logger = logging.getLogger("prayerdash")
    logger.info("Config summary: %s", _config_summary(config))

    # One clock for the whole app: the location's wall time, not the server's.
    engine = PrayerTimeEngine(
        build_settings(config), now_provider=location_clock(config.location.timezone)
    )
    schedule = engine.refresh(day)
    if schedule is None:
        # Keep running: the daily refresh or a settings change may recover.
        logger.error("Prayer times unavailable: %s", engine.error)
    else:
        for entry in schedule.entries:
            marker = " (custom)" if entry.is_custom else ""
            logger.info("%s %s%s", entry.display_name, entry.time, marker)

    if args.dry_run:
        # Dry-run should not block; it just validates config and computation.
        logger.info("Dry-run mode enabled; not starting scheduler.")
        return 0 if schedule is not None else 1

    # Import APScheduler only after config is valid to avoid noisy failures.
    from apscheduler.schedulers.background import BackgroundScheduler

    scheduler = BackgroundScheduler(timezone=config.location.timezone)
    refresher = DailyRefreshScheduler(
        scheduler=scheduler, engine=engine, now_provider=engine.now
    )
    refresher.schedule_refresh_job()
    ticker = NextPrayerTicker(scheduler=scheduler, now_provider=engine.now)

    if config.control_panel.enabled:
        from prayerdash.control_panel import ControlPanelServer

        geocoder = GeocodingClient(
            base_url=config.geocoding.base_url,
            user_agent=config.geocoding.user_agent,
            timeout_seconds=config.geocoding.timeout_seconds,
        )
        secret_key = os.getenv("PRAYERDASH_SECRET_KEY", "prayerdash-dev")
        server = ControlPanelServer(
            username=config.control_panel.auth.username,
            password_hash=config.control_panel.auth.password_hash,
            engine=engine,
            secret_key=secret_key,
            geocoder=geocoder,
            now_provider=engine.now,
            host=config.control_panel.host,
            port=config.control_panel.port,
        )
        refresher.start()
        logger.info("Starting control panel on %s:%s", server.host, server.port)
        server.app.run(host=server.host, port=server.port)
        return 0

    logger.info("Control panel disabled; logging countdown only.")
    on_state = _make_countdown_logger(logger)
    current = {"subscription": ticker.subscribe(engine.entries, on_state)}

    def resubscribe(schedule) -> None:
        # Countdown subscriptions are bound to one day's entries.
        current["subscription"].cancel()
        current["subscription"] = ticker.subscribe(schedule.entries, on_state)

    refresher.on_refresh = resubscribe
    refresher.start()
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        current["subscription"].cancel()
        scheduler.shutdown(wait=False)
    return 0


def build_settings(config: AppConfig) -> PrayerSettings:
    return PrayerSettings(
        coordinates=GeoCoordinate.resolve(config.location.latitude, config.location.longitude),
        calculation_method=resolve_method(config.prayer.calculation_method),
        madhab=resolve_madhab(config.prayer.madhab),
        custom_times=dict(config.prayer.custom_times),
        timezone=config.location.timezone,
        high_latitude_rule=resolve_high_latitude_rule(config.prayer.high_latitude_rule),
    )


def _config_summary(config: AppConfig) -> dict:
    return {
        "location": {
            "city": config.location.city,
            "country": config.location.country,
            "latitude": config.location.latitude,
            "longitude": config.location.longitude,
            "timezone": config.location.timezone,
        },
        "prayer": {
            "calculation_method": config.prayer.calculation_method,
            "madhab": config.prayer.madhab,
            "high_latitude_rule": config.prayer.high_latitude_rule,
            "custom_times": dict(config.prayer.custom_times),
        },
        "geocoding": {
            "base_url": config.geocoding.base_url,
            "timeout_seconds": config.geocoding.timeout_seconds,
        },
        "control_panel": {
            "enabled": config.control_panel.enabled,
            "host": config.control_panel.host,
            "port": config.control_panel.port,
            "auth": {
                "username": config.control_panel.auth.username,
            },
        },
        "logging": {
            "file_path": config.logging.file_path,
        },
    }


def _make_countdown_logger(logger: logging.Logger):
    last = {"name": None, "minute": None}

    def on_state(state: NextPrayerState) -> None:
        # The ticker fires every second; log at most once a minute.
        minute = state.time_remaining
        if minute.endswith("s"):
            minute = minute.split(" ")[0] if " " in minute else "0m"
        if (state.name, minute) == (last["name"], last["minute"]):
            return
        last["name"], last["minute"] = state.name, minute
        logger.info("Next prayer: %s in %s", state.name, state.time_remaining)

    return on_state


def _parse_args(argv: Optional[Iterable[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Prayer time dashboard")
    parser.add_argument("--config", help="Path to config.yml")
    parser.add_argument("--date", help="Compute times for YYYY-MM-DD instead of today")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate config and compute today's times without starting services",
    )
    return parser.parse_args(argv)


if __name__ == "__main__":
    raise SystemExit(main())
