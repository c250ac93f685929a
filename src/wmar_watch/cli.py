from __future__ import annotations

import argparse
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from .config import IrsConfig, load_config
from .logging_config import configure_logging
from .mailer import Mailer
from .runner import CheckRunner
from .state import HistoryLog, JsonFileStore


logger = logging.getLogger("wmar_watch")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID_CONFIG = 2

TEST_MAIL_SUBJECT = "WMAR test email (daily thread)"


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="wmar_watch")
    p.add_argument(
        "--env-file",
        default=".env",
        help="Path to a dotenv file (default: .env). If missing, env vars must already be set.",
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    check = sub.add_parser("check", help="Check the amended return status and e-mail the result")
    check.add_argument("--config", default="config.yaml", help="Optional YAML config (default: config.yaml)")
    check.add_argument("--headful", action="store_true", help="Run the browser headful (debug)")
    check.add_argument(
        "--no-submit",
        action="store_true",
        help="Fill the shared-secrets form but do not submit it (verify the fill strategy).",
    )
    check.add_argument(
        "--engine",
        action="append",
        choices=["chromium", "firefox"],
        default=None,
        help="Browser engine to use; repeat to define the fallback order (default: chromium then firefox).",
    )
    check.add_argument("--tax-year", default="", help="Tax year to select (default: TAX_YEAR or 2023)")
    check.add_argument("--step-debug", action="store_true", help="Save step-by-step screenshots under the debug dir.")

    test_mail = sub.add_parser("test-mail", help="Send a test e-mail to verify SMTP settings")
    test_mail.add_argument("--config", default="config.yaml", help="Optional YAML config (default: config.yaml)")

    history = sub.add_parser("history", help="Print recent status history")
    history.add_argument("--config", default="config.yaml", help="Optional YAML config (default: config.yaml)")
    history.add_argument("--limit", type=int, default=10, help="Number of most recent entries (default: 10)")

    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    env_path = Path(args.env_file)
    if env_path.exists():
        load_dotenv(env_path)

    # Default logging: can be overridden once config is loaded.
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"))

    try:
        cfg = load_config(args.config)
    except ValidationError as e:
        logger.error("Invalid configuration: %s", e)
        return EXIT_INVALID_CONFIG
    configure_logging(level=cfg.logging.level, file_path=cfg.logging.file_path)

    if args.cmd == "check":
        flow_updates: dict = {}
        if args.headful:
            flow_updates["headful"] = True
        if args.no_submit:
            flow_updates["submit"] = False
        if args.engine:
            flow_updates["engines"] = list(dict.fromkeys(args.engine))
        updates: dict = {}
        if flow_updates:
            updates["flow"] = cfg.flow.model_copy(update=flow_updates)
        if args.tax_year:
            try:
                updates["irs"] = IrsConfig.model_validate({**cfg.irs.model_dump(), "tax_year": args.tax_year})
            except ValidationError as e:
                logger.error("Invalid --tax-year: %s", e)
                return EXIT_INVALID_CONFIG
        if updates:
            cfg = cfg.model_copy(update=updates)

        logger.info(
            "Starting check (tax_year=%s submit=%s engines=%s)",
            cfg.irs.tax_year,
            cfg.flow.submit,
            ",".join(cfg.flow.engines),
        )
        runner = CheckRunner(cfg, step_debug=args.step_debug)
        try:
            outcome = runner.run()
        except ValueError as e:
            # Malformed SSN and friends: fatal before any navigation.
            logger.error("Invalid credentials: %s", e)
            return EXIT_INVALID_CONFIG
        return outcome.exit_code

    if args.cmd == "test-mail":
        mailer = Mailer(cfg.mail)
        if not mailer.enabled:
            logger.error("Mail is not configured (set MAIL_FROM, MAIL_TO and GMAIL_APP_PWD).")
            return EXIT_INVALID_CONFIG
        try:
            mailer.send(TEST_MAIL_SUBJECT, "If you see this, SMTP is working. You can delete this later.")
        except Exception as e:
            logger.error("Test email failed (%s:%s): %s", cfg.mail.smtp_host, cfg.mail.smtp_port, e)
            return EXIT_FAILED
        logger.info("Email sent")
        return EXIT_OK

    if args.cmd == "history":
        if not cfg.state.history_path:
            logger.error("No history file configured (HISTORY_PATH).")
            return EXIT_INVALID_CONFIG
        log = HistoryLog(JsonFileStore(cfg.state.history_path), limit=cfg.state.history_limit)
        for entry in log.entries()[-max(args.limit, 1):]:
            when = datetime.fromtimestamp(entry.observed_at_ms / 1000).strftime("%Y-%m-%d %H:%M")
            print(f"{when}  {entry.category.value:<10}  {entry.key_line}")
        return EXIT_OK

    raise SystemExit(f"Unknown command: {args.cmd}")
