# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
"""
Step timing helpers shared by the provisioning and migration pipelines.
"""
from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Generator


def emoji_for_level(level: int) -> str:
    if level >= logging.ERROR:
        return "❌"
    if level >= logging.WARNING:
        return "⚠️"
    if level >= logging.INFO:
        return "✅"
    return "🔍"


def log_with_emoji(logger: Any, level: int, msg: str, *args: Any) -> None:
    logger.log(level, f"{emoji_for_level(level)} {msg}", *args)


@contextmanager
def log_step(logger: Any, description: str, *, level: int = logging.INFO) -> Generator[None, None, None]:
    """
    Log the start of a step, run the block, then log completion with the
    elapsed time. Failures are logged and re-raised.

    Example:
        with log_step(log, "Relocating VM"):
            provider.relocate_virtual_machine(vm, spec, ctx)
    """
    t0 = time.monotonic()
    log_with_emoji(logger, level, "%s ...", description)
    try:
        yield
    except Exception as e:
        log_with_emoji(logger, logging.ERROR, "%s failed (%.2fs): %s", description, time.monotonic() - t0, e)
        raise
    log_with_emoji(logger, level, "%s done (%.2fs)", description, time.monotonic() - t0)
