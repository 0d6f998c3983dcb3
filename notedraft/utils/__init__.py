"""Utility helpers."""

from notedraft.utils.helpers import atomic_write_json, ensure_dir, parse_bool, utc_now_iso

__all__ = ["atomic_write_json", "ensure_dir", "parse_bool", "utc_now_iso"]
