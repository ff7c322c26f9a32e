"""Render the unattended POSIX ``sh`` script from the decision table.

The script re-implements fact gathering and the filesystem steps in shell,
but the rule chain itself is generated from :func:`volumelink.links.rules_for`
so the script and the in-process reconciler cannot drift apart.
"""

from __future__ import annotations

import os
import shlex
import shutil
import string
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from volumelink.config import VolumeLinkConfig
from volumelink.links import DecisionRule, ManagedLink, ReconcileTrigger, StateKind, Step, rules_for

from .exceptions import ServiceError

MOUNT_PROBES = ("directory", "diskutil", "mountpoint")
DEFAULT_SCRIPT_NAME = "volumelink-reconcile.sh"

_TEMPLATE_FIELDS = {"name": "name", "local": "local_path", "target": "target"}

_STEP_FUNCTIONS = {
    Step.BACKUP: "step_backup",
    Step.REMOVE_LINK: "step_remove_link",
    Step.ENSURE_TARGET: "step_ensure_target",
    Step.COPY_TREE: "step_copy_tree",
    Step.REMOVE_TREE: "step_remove_tree",
    Step.CREATE_LINK: "step_create_link",
    Step.CREATE_PLACEHOLDER: "step_create_placeholder",
}

_PRELUDE = r"""
log() {
    printf '%s %s\n' "$(date '+%Y-%m-%d %H:%M:%S')" "$*" >> "$LOG_FILE"
}

rotate_log() {
    mkdir -p "$(dirname "$LOG_FILE")" || return 0
    [ -f "$LOG_FILE" ] || return 0
    size=$(wc -c < "$LOG_FILE" | tr -d ' ')
    if [ "${size:-0}" -gt "$MAX_LOG_BYTES" ]; then
        mv -f "$LOG_FILE" "$LOG_FILE.old"
        log "Log rotated"
    fi
}

guard_path() {
    trimmed=$(printf '%s' "$1" | tr -d '[:space:]/')
    if [ -z "$trimmed" ]; then
        log "ERROR: refusing to operate on empty or root path '$1'"
        return 1
    fi
}

strip_slashes() {
    printf '%s' "$1" | sed 's:/*$::'
}

classify() {
    if [ -L "$1" ]; then
        echo symlink
    elif [ -d "$1" ]; then
        echo directory
    elif [ -e "$1" ]; then
        echo file
    else
        echo missing
    fi
}

is_empty_dir() {
    [ -d "$1" ] && [ ! -L "$1" ] || return 1
    entries=$(ls -A "$1" 2>/dev/null) || return 1
    [ -z "$entries" ]
}

has_entries() {
    [ -d "$1" ] || return 1
    entries=$(ls -A "$1" 2>/dev/null) || return 1
    [ -n "$entries" ]
}

is_mounted() {
    guard_path "$MOUNT_PATH" || return 1
    [ -d "$MOUNT_PATH" ] || return 1
    case "$MOUNT_PROBE" in
        diskutil)
            [ -n "$DRIVE_ID" ] || return 0
            reported=$(diskutil info "$DRIVE_ID" 2>/dev/null | sed -n 's/^ *Mount Point: *//p')
            [ "$(strip_slashes "$reported")" = "$(strip_slashes "$MOUNT_PATH")" ]
            ;;
        mountpoint)
            mountpoint -q "$MOUNT_PATH"
            ;;
        *)
            return 0
            ;;
    esac
}

fail() {
    log "[$name] ERROR: $*"
    return 1
}

step_backup() {
    guard_path "$local_path" || return 1
    ts=$(date +%s)
    while [ -e "$local_path.backup.$ts" ] || [ -L "$local_path.backup.$ts" ]; do
        ts=$((ts + 1))
    done
    mv "$local_path" "$local_path.backup.$ts" || { fail "Failed to back up $local_path"; return 1; }
    log "[$name] Moved $name content to $local_path.backup.$ts"
}

step_remove_link() {
    guard_path "$local_path" || return 1
    [ -L "$local_path" ] || { fail "$local_path is no longer a symlink"; return 1; }
    rm -f "$local_path" || { fail "Failed to remove $local_path"; return 1; }
}

step_ensure_target() {
    guard_path "$target" || return 1
    mkdir -p "$target" || { fail "Failed to create symlink: cannot create drive directory $target"; return 1; }
}

step_copy_tree() {
    log "[$name] Copying $name to $target..."
    mkdir -p "$target" || { fail "Failed to copy files: cannot create $target"; return 1; }
    if command -v rsync >/dev/null 2>&1; then
        rsync -a "$local_path/" "$target/" >> "$LOG_FILE" 2>&1 && return 0
    fi
    cp -R "$local_path/." "$target/" >> "$LOG_FILE" 2>&1 || { fail "Failed to copy files"; return 1; }
}

step_remove_tree() {
    guard_path "$local_path" || return 1
    [ -d "$local_path" ] && [ ! -L "$local_path" ] || { fail "$local_path is no longer a real directory"; return 1; }
    log "[$name] Removing original $name directory..."
    rm -rf "$local_path" || { fail "Failed to remove files"; return 1; }
}

step_create_link() {
    guard_path "$local_path" || return 1
    mkdir -p "$(dirname "$local_path")" || { fail "Failed to create symlink"; return 1; }
    ln -s "$target" "$local_path" || { fail "Failed to create symlink"; return 1; }
    log "[$name] Linked $local_path -> $target"
}

step_create_placeholder() {
    guard_path "$local_path" || return 1
    mkdir -p "$local_path" || { fail "Failed to create placeholder directory"; return 1; }
    log "[$name] Created empty placeholder directory at $local_path"
}
"""

_FACTS = r"""
reconcile_link() {
    name=$1
    local_path=$2
    target=$3
    guard_path "$local_path" || return 1
    [ "$mounted" = true ] || target=""

    kind=$(classify "$local_path")
    link_matches=false
    reachable=false
    local_empty=false
    target_populated=false
    if [ "$kind" = symlink ]; then
        [ -e "$local_path" ] && reachable=true
        if [ -n "$target" ] && [ "$(strip_slashes "$(readlink "$local_path")")" = "$(strip_slashes "$target")" ]; then
            link_matches=true
        fi
    fi
    if [ "$kind" = directory ] && is_empty_dir "$local_path"; then
        local_empty=true
    fi
    if [ -n "$target" ] && has_entries "$target"; then
        target_populated=true
    fi
"""


@dataclass(frozen=True)
class ScriptParameters:
    """Values baked into the unattended script.

    Attributes:
        drive_id: Identifier handed to the mount probe (volume UUID on macOS).
        mount_path: Mount path the drive is expected at.
        links: Managed links reconciled by the script.
        log_path: Log file the script appends to.
        probe: How the script confirms the drive is mounted.
        max_log_bytes: Size after which the log is rotated.
    """

    drive_id: str
    mount_path: Path
    links: Sequence[ManagedLink] = field(default_factory=tuple)
    log_path: Path = Path("~/.volumelink/unattended.log").expanduser()
    probe: str = "directory"
    max_log_bytes: int = 1_048_576

    def __post_init__(self) -> None:
        if self.probe not in MOUNT_PROBES:
            raise ServiceError(f"Unknown mount probe {self.probe!r}; expected one of {', '.join(MOUNT_PROBES)}")

    @classmethod
    def from_config(cls, config: VolumeLinkConfig, *, probe: Optional[str] = None) -> "ScriptParameters":
        """Build parameters from the stored configuration.

        Raises:
            ServiceError: If no drive path has been configured yet.
        """
        if not config.drive.path:
            raise ServiceError("No drive configured. Run `volumelink configure --drive PATH` first.")
        chosen = probe or config.service.mount_probe
        return cls(
            drive_id=config.drive.id or "",
            mount_path=Path(config.drive.path).expanduser(),
            links=tuple(config.links),
            log_path=Path(config.service.log_path).expanduser(),
            probe=resolve_mount_probe(chosen),
            max_log_bytes=config.service.max_log_bytes,
        )


def resolve_mount_probe(setting: str) -> str:
    """Map ``auto`` to the probe available on this platform."""
    if setting != "auto":
        return setting
    if sys.platform == "darwin":
        return "diskutil"
    if shutil.which("mountpoint"):
        return "mountpoint"
    return "directory"


def render_script(params: ScriptParameters) -> str:
    """Return the text of the unattended reconciliation script."""
    lines = [
        "#!/bin/sh",
        "# Generated by volumelink; regenerate with `volumelink script` instead of editing.",
        "set -u",
        "",
        f"DRIVE_ID={shlex.quote(params.drive_id)}",
        f"MOUNT_PATH={shlex.quote(os.fspath(params.mount_path))}",
        f"MOUNT_PROBE={shlex.quote(params.probe)}",
        f"LOG_FILE={shlex.quote(os.fspath(params.log_path))}",
        f"MAX_LOG_BYTES={int(params.max_log_bytes)}",
        "STATUS=0",
    ]
    script = "\n".join(lines) + "\n" + _PRELUDE + _FACTS
    script += "".join(_render_rule(rule) for rule in rules_for(ReconcileTrigger.UNATTENDED))
    script += '\n    fail "no reconciliation rule matched (kind=$kind)"\n    return 1\n}\n'
    script += "\n" + _render_main(params)
    return script


def write_script(path: Path, text: str) -> Path:
    """Write ``text`` to ``path`` and mark it executable.

    Raises:
        ServiceError: If the file cannot be written.
    """
    path = Path(path).expanduser()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        path.chmod(0o755)
    except OSError as exc:
        raise ServiceError(f"Failed to write script {path}: {exc}") from exc
    return path


def _render_rule(rule: DecisionRule) -> str:
    tests = " && ".join(f'[ "${fact}" = {_shell_value(value)} ]' for fact, value in rule.conditions())
    body = [f"\n    # {rule.rule_id}: {rule.action.value}", f"    if {tests}; then"]
    body.append(f'        log "[$name] {_double_quoted(rule.message)}"')
    for step in rule.steps:
        body.append(f"        {_STEP_FUNCTIONS[step]} || return 1")
    body.append("        return 0")
    body.append("    fi")
    return "\n".join(body) + "\n"


def _render_main(params: ScriptParameters) -> str:
    lines = [
        "rotate_log",
        "if is_mounted; then",
        "    mounted=true",
        '    log "Drive $MOUNT_PATH is mounted"',
        "else",
        "    mounted=false",
        '    log "Drive $MOUNT_PATH is NOT mounted"',
        "fi",
        "",
    ]
    for link in params.links:
        target = Path(params.mount_path) / link.drive_subpath
        arguments = " ".join(
            shlex.quote(value) for value in (link.name, os.fspath(link.local_path), os.fspath(target))
        )
        lines.append(f"reconcile_link {arguments} || STATUS=1")
    lines.extend(["", 'exit "$STATUS"', ""])
    return "\n".join(lines)


def _shell_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, StateKind):
        return value.value
    return shlex.quote(str(value))


def _double_quoted(template: str) -> str:
    """Translate a message template into the body of a double-quoted sh string."""
    parts: list[str] = []
    for literal, field_name, _, _ in string.Formatter().parse(template):
        parts.append(_escape_double_quoted(literal))
        if field_name is not None:
            variable = _TEMPLATE_FIELDS.get(field_name)
            if variable is None:
                raise ServiceError(f"Unsupported placeholder {{{field_name}}} in message template")
            parts.append("${" + variable + "}")
    return "".join(parts)


def _escape_double_quoted(text: str) -> str:
    for char in ("\\", '"', "$", "`"):
        text = text.replace(char, "\\" + char)
    return text


__all__ = [
    "DEFAULT_SCRIPT_NAME",
    "MOUNT_PROBES",
    "ScriptParameters",
    "render_script",
    "resolve_mount_probe",
    "write_script",
]
