# Copyright (c) 2026 Veritas Aequitas Holdings LLC. All rights reserved.
"""User-facing schedule presets and their fixed cron expressions."""

from __future__ import annotations

from diviner.core.constants import SchedulePreset

SCHEDULE_PRESETS: dict[SchedulePreset, str] = {
    SchedulePreset.DAILY: "0 2 * * *",  # 02:00 every day
    SchedulePreset.WEEKLY: "0 2 * * 1",  # 02:00 every Monday
    SchedulePreset.MONTHLY: "0 2 1 * *",  # 02:00 on the 1st
}


def cron_for_preset(preset: SchedulePreset | str, custom_cron: str | None = None) -> str | None:
    """Map a preset to its cron expression; ``custom`` passes *custom_cron* through."""
    preset = SchedulePreset(preset)
    if preset is SchedulePreset.CUSTOM:
        return custom_cron
    return SCHEDULE_PRESETS[preset]


def preset_from_cron(cron: str | None) -> SchedulePreset | None:
    """Derive the preset that produced *cron*, ``custom`` for anything else."""
    if not cron:
        return None
    for preset, expression in SCHEDULE_PRESETS.items():
        if cron == expression:
            return preset
    return SchedulePreset.CUSTOM
